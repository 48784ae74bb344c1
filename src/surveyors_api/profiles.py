"""
Surveyor profile operations.

Every write that spans more than one statement runs inside
Database.transaction(): an error at any step rolls the whole sequence back
and the connection goes back to the pool either way.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence

from src.surveyors_api import db
from src.surveyors_api.auth_utils import hash_password, issue_token, verify_password
from src.surveyors_api.config import Settings
from src.surveyors_api.db import Database
from src.surveyors_api.errors import AppError, ErrorKind
from src.surveyors_api.records import (
    COUNTIES,
    SERVICE_SUBCATEGORIES,
    SURVEYORS,
    SURVEYORS_COUNTIES,
    SURVEYORS_SERVICES,
    Page,
    RecordStore,
)

logger = logging.getLogger(__name__)

DEFAULT_COUNTY_NAMES = ("Boulder", "Broomfield", "Gilpin")

PROFILE_FIELDS = (
    "id",
    "first_name",
    "last_name",
    "company_name",
    "email",
    "phone",
    "address",
    "town",
    "state",
    "zip_code",
)

_SERVICES_QUERY = """
    SELECT ssc.name AS subservice_name, sc.name AS category_name
    FROM surveyors_services ss
    JOIN service_subcategories ssc ON ss.subcategory_id = ssc.id
    JOIN service_categories sc ON ssc.category_id = sc.id
    WHERE ss.surveyor_id = %s
    ORDER BY sc.name, ssc.name
"""

_COUNTIES_QUERY = """
    SELECT c.name AS county_name
    FROM counties c
    JOIN surveyors_counties sc ON c.id = sc.county_id
    WHERE sc.surveyor_id = %s
    ORDER BY c.name
"""

_CATALOG_QUERY = """
    SELECT sc.name AS category_name, ssc.name AS subservice_name
    FROM service_categories sc
    LEFT JOIN service_subcategories ssc ON ssc.category_id = sc.id
    ORDER BY sc.name, ssc.name
"""


@dataclass(frozen=True)
class Association:
    """A join table linking surveyors to one kind of reference row, looked up by name."""

    table: str
    ref_column: str
    ref_table: str


SERVICES = Association(table=SURVEYORS_SERVICES, ref_column="subcategory_id", ref_table=SERVICE_SUBCATEGORIES)
AREAS = Association(table=SURVEYORS_COUNTIES, ref_column="county_id", ref_table=COUNTIES)


class ProfileService:
    """Registration, login and profile maintenance for surveyors."""

    def __init__(self, database: Database, settings: Settings) -> None:
        self._db = database
        self._settings = settings
        self._records = RecordStore(database)

    def _link_by_names(self, conn: Any, user_id: int, assoc: Association, names: Sequence[str]) -> int:
        # Unknown names are dropped; the linked set may be a subset of names.
        refs = self._records.find_in(assoc.ref_table, "name", list(dict.fromkeys(names)), columns=("id",), conn=conn)
        ref_ids = list(dict.fromkeys(row["id"] for row in refs))
        rows = [{"surveyor_id": user_id, assoc.ref_column: ref_id} for ref_id in ref_ids]
        return self._records.batch_insert(assoc.table, rows, conn=conn).affected_rows

    def _replace_associations(self, user_id: int, assoc: Association, names: Sequence[str]) -> int:
        with self._db.transaction() as conn:
            self._records.delete_by_field(assoc.table, "surveyor_id", user_id, conn=conn)
            linked = self._link_by_names(conn, user_id, assoc, names)
        logger.info("Replaced %s for surveyor %s: %d requested, %d linked", assoc.table, user_id, len(names), linked)
        return linked

    # PUBLIC_INTERFACE
    def register(self, fields: Mapping[str, Any], password: str) -> Dict[str, Any]:
        """
        Create a surveyor and link the default counties.

        fields holds the surveyors columns except password. Raises CONFLICT
        when the email is taken. If none of the default counties exist the
        surveyor is still created, with no county links.
        """
        email = fields["email"]
        with self._db.transaction() as conn:
            if self._records.exists_by_field(SURVEYORS, "email", email, conn=conn):
                raise AppError(ErrorKind.CONFLICT, "User with that email already exists.")

            record = dict(fields)
            record["password"] = hash_password(password, self._settings)
            user_id = self._records.insert(SURVEYORS, record, conn=conn)

            linked = self._link_by_names(conn, user_id, AREAS, DEFAULT_COUNTY_NAMES)
            if not linked:
                logger.warning(
                    "Could not find default counties (%s); surveyor %s has no counties assigned",
                    ", ".join(DEFAULT_COUNTY_NAMES),
                    user_id,
                )

        logger.info("Registered surveyor %s", user_id)
        return {
            "id": user_id,
            "email": email,
            "first_name": fields.get("first_name"),
            "last_name": fields.get("last_name"),
            "company_name": fields.get("company_name"),
        }

    # PUBLIC_INTERFACE
    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        """Check credentials and return the user, a fresh token and its configured lifetime."""
        rows = self._records.find_by_field(SURVEYORS, "email", email, columns=("id", "email", "password"))
        if not rows:
            raise AppError(ErrorKind.UNAUTHORIZED, "Invalid credentials: Email not found.")
        user = rows[0]
        if not verify_password(password, user["password"], self._settings):
            raise AppError(ErrorKind.UNAUTHORIZED, "Invalid credentials: Incorrect password.")

        return {
            "user": {"id": user["id"], "email": user["email"]},
            "token": issue_token(user["id"], user["email"], self._settings),
            "expires_in": self._settings.jwt_expires_in,
        }

    # PUBLIC_INTERFACE
    def get_profile(self, user_id: int) -> Dict[str, Any]:
        """Surveyor columns plus offered services and served counties."""
        with self._db.connection() as conn:
            surveyor = self._records.find_by_id(SURVEYORS, user_id, columns=PROFILE_FIELDS, conn=conn)
            if surveyor is None:
                raise AppError(ErrorKind.NOT_FOUND, "User not found.")
            services = db.fetch_all(conn, _SERVICES_QUERY, [user_id])
            counties = db.fetch_all(conn, _COUNTIES_QUERY, [user_id])

        profile = dict(surveyor)
        profile["services_provided"] = list(dict.fromkeys(row["category_name"] for row in services))
        profile["subservices_provided"] = [row["subservice_name"] for row in services]
        profile["counties_provided"] = [row["county_name"] for row in counties]
        return profile

    # PUBLIC_INTERFACE
    def update_info(self, user_id: int, columns: Mapping[str, Any]) -> None:
        """Write the given surveyors columns. NOT_FOUND when no row matches."""
        if not columns:
            raise AppError(ErrorKind.VALIDATION, "No profile fields provided.")
        with self._db.transaction() as conn:
            affected = self._records.update_by_id(SURVEYORS, user_id, columns, conn=conn)
            if affected == 0:
                raise AppError(ErrorKind.NOT_FOUND, "User not found or no changes made.")
        logger.info("Updated profile fields %s for surveyor %s", sorted(columns), user_id)

    # PUBLIC_INTERFACE
    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        with self._db.transaction() as conn:
            user = self._records.find_by_id(SURVEYORS, user_id, columns=("password",), conn=conn)
            if user is None:
                raise AppError(ErrorKind.NOT_FOUND, "User not found.")
            if not verify_password(current_password, user["password"], self._settings):
                raise AppError(ErrorKind.UNAUTHORIZED, "Incorrect current password.")

            new_hash = hash_password(new_password, self._settings)
            affected = self._records.update_by_id(SURVEYORS, user_id, {"password": new_hash}, conn=conn)
            if affected == 0:
                raise AppError(ErrorKind.SERVER_ERROR, "Password update failed. No rows affected.")
        logger.info("Password changed for surveyor %s", user_id)

    # PUBLIC_INTERFACE
    def replace_services(self, user_id: int, subservice_names: Sequence[str]) -> int:
        """Replace the surveyor's offered subservices; returns how many were linked."""
        return self._replace_associations(user_id, SERVICES, subservice_names)

    # PUBLIC_INTERFACE
    def replace_counties(self, user_id: int, county_names: Sequence[str]) -> int:
        """Replace the surveyor's served counties; returns how many were linked."""
        return self._replace_associations(user_id, AREAS, county_names)

    # PUBLIC_INTERFACE
    def delete(self, user_id: int) -> None:
        """Remove the surveyor and both association sets explicitly."""
        with self._db.transaction() as conn:
            self._records.delete_by_field(SURVEYORS_SERVICES, "surveyor_id", user_id, conn=conn)
            self._records.delete_by_field(SURVEYORS_COUNTIES, "surveyor_id", user_id, conn=conn)
            if self._records.delete_by_id(SURVEYORS, user_id, conn=conn) == 0:
                raise AppError(ErrorKind.NOT_FOUND, "User not found or already deleted.")
        logger.info("Deleted surveyor %s", user_id)

    # PUBLIC_INTERFACE
    def list_counties(self, page: int, limit: int) -> Page:
        return self._records.paginate(COUNTIES, page, limit, order_by="name", columns=("id", "name"))

    # PUBLIC_INTERFACE
    def service_catalog(self) -> List[Dict[str, Any]]:
        """Categories with their subservice names, alphabetical."""
        with self._db.connection() as conn:
            rows = db.fetch_all(conn, _CATALOG_QUERY)

        catalog: Dict[str, List[str]] = {}
        for row in rows:
            subservices = catalog.setdefault(row["category_name"], [])
            if row["subservice_name"] is not None:
                subservices.append(row["subservice_name"])
        return [{"name": name, "subservices": subs} for name, subs in catalog.items()]

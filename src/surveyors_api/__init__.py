"""
Surveyor directory API package.

Modules:
- config: environment-driven Settings
- db: PostgreSQL pool lifecycle, connection/transaction scopes, query helpers
- records: generic table record access (find/insert/update/delete/paginate)
- auth_utils: password hashing and JWT issuance/verification
- profiles: registration, login and transactional profile maintenance
- dependencies: FastAPI wiring and the owner-only authorization gate
- errors: error taxonomy and the centralized JSON error translator
- mailer: SMTP hand-off for the email endpoint
- schemas: Pydantic models for the REST API
"""

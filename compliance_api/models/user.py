from datetime import datetime
from compliance_api.extensions import db
from werkzeug.security import generate_password_hash, check_password_hash

ROLE_ADMIN = "admin"
ROLE_ADVISOR = "advisor"
ROLE_SUBCONTRACTOR = "subcontractor"
ROLES = (ROLE_ADMIN, ROLE_ADVISOR, ROLE_SUBCONTRACTOR)

USER_STATUSES = ("active", "inactive")


class User(db.Model):
    __tablename__ = "users"

    id           = db.Column(db.Integer, primary_key=True)
    email        = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash= db.Column(db.String(255), nullable=False)
    full_name    = db.Column(db.String(255), nullable=True)
    role         = db.Column(db.String(20), nullable=False, index=True)
    company_name = db.Column(db.String(255), nullable=True)  # required for subcontractors
    status       = db.Column(db.String(20), default="active", nullable=False)
    created_at   = db.Column(db.DateTime, default=datetime.utcnow)

    # --- helpers ---
    def set_password(self, raw: str):
        self.password_hash = generate_password_hash(raw)

    def check_password(self, raw: str) -> bool:
        return check_password_hash(self.password_hash, raw)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def display_name(self) -> str:
        return self.company_name or self.full_name or self.email

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"

from datetime import datetime

from compliance_api.extensions import db


project_subcontractors = db.Table(
    "project_subcontractors",
    db.Column("project_id", db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    db.Column("subcontractor_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Project(db.Model):
    """
    A construction project. One advisor monitors it; any number of
    subcontractors report monthly safety metrics against it.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    assigned_advisor_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    advisor = db.relationship("User", foreign_keys=[assigned_advisor_id])
    subcontractors = db.relationship(
        "User",
        secondary=project_subcontractors,
        lazy="selectin",
        order_by="User.id",
        backref=db.backref("subcontracted_projects", lazy="dynamic"),
    )

    def has_subcontractor(self, user_id: int) -> bool:
        return any(u.id == user_id for u in self.subcontractors)

    def visible_to(self, user) -> bool:
        if user.role == "admin":
            return True
        if user.role == "advisor":
            return self.assigned_advisor_id == user.id
        return self.has_subcontractor(user.id)

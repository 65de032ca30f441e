from __future__ import annotations

from ..extensions import db


class IdempotencyRecord(db.Model):
    """
    Outcome of the first successful execution of an operation.

    The (scope, key) unique constraint is the only arbiter of "already
    happened"; it is enforced by the database so it holds across processes.
    Rows are immutable once written.
    """
    __tablename__ = "idempotency_records"
    __table_args__ = (
        db.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(64), nullable=False)
    key = db.Column(db.String(128), nullable=False)
    resource_id = db.Column(db.String(64), nullable=True)

    # JSON-serialized outcome, returned verbatim on replay
    result = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<IdempotencyRecord scope={self.scope!r} key={self.key!r}>"

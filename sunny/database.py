"""
Sunny - Datastore models and access using SQLAlchemy.
Supports SQLite (default) and PostgreSQL.

Every tenant-owned table carries a ``tenant_id`` column; rows reached only
through a parent (tag assignments, workflow steps, sale items) are scoped by
joining to that parent.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    desc,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how rows are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid4())


class TenantModel(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    subscription_tier = Column(String(50), default="starter")
    theme_id = Column(String(100), nullable=True)
    fee_handling = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    members = relationship(
        "TenantMemberModel", back_populates="tenant", cascade="all, delete-orphan"
    )


class TenantMemberModel(Base):
    __tablename__ = "tenant_members"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    user_id = Column(String(255), nullable=False)
    role = Column(String(50), default="owner")
    created_at = Column(DateTime, default=utcnow)

    tenant = relationship("TenantModel", back_populates="members")

    __table_args__ = (Index("idx_tenant_members_user_id", "user_id"),)


class InventoryItemModel(Base):
    __tablename__ = "inventory_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)
    material = Column(String(255), nullable=True)
    quantity_on_hand = Column(Float, default=0.0)
    unit = Column(String(20), default="in")
    cost_per_unit = Column(Float, default=0.0)
    sell_price = Column(Float, default=0.0)
    reorder_threshold = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_inventory_items_tenant_id", "tenant_id"),)


class ClientModel(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_clients_tenant_id", "tenant_id"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class ClientTagModel(Base):
    __tablename__ = "client_tags"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    name = Column(String(100), nullable=False)
    color = Column(String(20), default="#7A8B8C")
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_client_tags_name"),)


class ClientTagAssignmentModel(Base):
    __tablename__ = "client_tag_assignments"

    id = Column(String(36), primary_key=True, default=_uuid)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    tag_id = Column(String(36), ForeignKey("client_tags.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("client_id", "tag_id", name="uq_client_tag_assignment"),
    )


class ClientNoteModel(Base):
    __tablename__ = "client_notes"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    created_by = Column(String(255), nullable=True)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class EventModel(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    booth_fee = Column(Float, default=0.0)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_events_tenant_start", "tenant_id", "start_time"),)


class SaleModel(Base):
    __tablename__ = "sales"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)
    subtotal = Column(Float, default=0.0)
    tax_amount = Column(Float, default=0.0)
    tip_amount = Column(Float, default=0.0)
    total = Column(Float, default=0.0)
    payment_method = Column(String(50), default="card")
    status = Column(String(50), default="completed")
    created_at = Column(DateTime, default=utcnow)

    items = relationship(
        "SaleItemModel", back_populates="sale", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_sales_tenant_created", "tenant_id", "created_at"),)


class SaleItemModel(Base):
    __tablename__ = "sale_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    sale_id = Column(String(36), ForeignKey("sales.id"), nullable=False)
    name = Column(String(255), nullable=False)
    quantity = Column(Float, default=1.0)
    line_total = Column(Float, default=0.0)

    sale = relationship("SaleModel", back_populates="items")


class QueueEntryModel(Base):
    __tablename__ = "queue_entries"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=True)
    name = Column(String(255), nullable=False)
    status = Column(String(50), default="waiting")
    position = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)


class MessageTemplateModel(Base):
    __tablename__ = "message_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    name = Column(String(255), nullable=False)
    channel = Column(String(20), default="sms")
    category = Column(String(100), default="general")
    subject = Column(String(255), nullable=True)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_message_templates_name"),
    )


class WorkflowTemplateModel(Base):
    __tablename__ = "workflow_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    name = Column(String(255), nullable=False)
    trigger_type = Column(String(50), default="manual")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    steps = relationship(
        "WorkflowStepModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStepModel.step_order",
    )


class WorkflowStepModel(Base):
    __tablename__ = "workflow_steps"

    id = Column(String(36), primary_key=True, default=_uuid)
    workflow_id = Column(String(36), ForeignKey("workflow_templates.id"), nullable=False)
    step_order = Column(Integer, nullable=False)
    delay_hours = Column(Float, default=0.0)
    channel = Column(String(20), default="sms")
    template_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    workflow = relationship("WorkflowTemplateModel", back_populates="steps")


class WorkflowQueueModel(Base):
    __tablename__ = "workflow_queue"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    workflow_step_id = Column(String(36), ForeignKey("workflow_steps.id"), nullable=False)
    template_name = Column(String(255), nullable=True)
    channel = Column(String(20), default="sms")
    scheduled_for = Column(DateTime, nullable=False)
    status = Column(String(50), default="pending")
    message_body = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class TaxProfileModel(Base):
    __tablename__ = "tax_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    name = Column(String(255), nullable=False)
    rate = Column(Float, nullable=False)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)


class MessageLogModel(Base):
    __tablename__ = "message_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)
    direction = Column(String(20), default="outbound")
    channel = Column(String(20), nullable=False)
    recipient_email = Column(String(255), nullable=True)
    recipient_phone = Column(String(50), nullable=True)
    subject = Column(String(255), nullable=True)
    body = Column(Text, nullable=False)
    source = Column(String(50), default="sunny_ai")
    status = Column(String(50), default="sent")
    created_at = Column(DateTime, default=utcnow)


class ToolAuditLogModel(Base):
    __tablename__ = "tool_audit_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    user_id = Column(String(255), nullable=True)
    tool_name = Column(String(100), nullable=False)
    arguments = Column(JSON, default=dict)
    result = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_tool_audit_log_tenant", "tenant_id", "created_at"),)


class KnowledgeGapModel(Base):
    __tablename__ = "knowledge_gaps"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    user_id = Column(String(255), nullable=True)
    user_message = Column(Text, default="")
    response = Column(Text, default="")
    category = Column(String(50), default="other")
    topic = Column(String(50), default="other")
    status = Column(String(50), default="pending")
    created_at = Column(DateTime, default=utcnow)


class KnowledgeAdditionModel(Base):
    __tablename__ = "knowledge_additions"

    id = Column(String(36), primary_key=True, default=_uuid)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)


class Database:
    """Database interface for the Sunny server."""

    def __init__(self, database_url: str):
        self.database_url = database_url

        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool if database_url.startswith("sqlite") else None,
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _add(self, session: Session, row: Any) -> Any:
        session.add(row)
        session.commit()
        session.refresh(row)
        return row

    # ==================== Tenants ====================

    def create_tenant(self, session: Session, **kwargs) -> TenantModel:
        return self._add(session, TenantModel(**kwargs))

    def get_tenant(self, session: Session, tenant_id: str) -> Optional[TenantModel]:
        return session.query(TenantModel).filter(TenantModel.id == tenant_id).first()

    def add_member(self, session: Session, tenant_id: str, user_id: str, role: str = "owner") -> TenantMemberModel:
        return self._add(
            session, TenantMemberModel(tenant_id=tenant_id, user_id=user_id, role=role)
        )

    def get_tenant_id_for_user(self, session: Session, user_id: str) -> Optional[str]:
        """Resolve the acting user's tenant through ``tenant_members``."""
        member = (
            session.query(TenantMemberModel)
            .filter(TenantMemberModel.user_id == user_id)
            .order_by(TenantMemberModel.created_at)
            .first()
        )
        return member.tenant_id if member else None

    # ==================== Business records ====================

    def create_client(self, session: Session, **kwargs) -> ClientModel:
        return self._add(session, ClientModel(**kwargs))

    def create_inventory_item(self, session: Session, **kwargs) -> InventoryItemModel:
        return self._add(session, InventoryItemModel(**kwargs))

    def create_event(self, session: Session, **kwargs) -> EventModel:
        return self._add(session, EventModel(**kwargs))

    def create_template(self, session: Session, **kwargs) -> MessageTemplateModel:
        return self._add(session, MessageTemplateModel(**kwargs))

    def record_sale(
        self, session: Session, items: Optional[List[dict]] = None, **kwargs
    ) -> SaleModel:
        sale = SaleModel(**kwargs)
        for item in items or []:
            sale.items.append(SaleItemModel(**item))
        return self._add(session, sale)

    def create_workflow(
        self, session: Session, steps: Optional[List[dict]] = None, **kwargs
    ) -> WorkflowTemplateModel:
        workflow = WorkflowTemplateModel(**kwargs)
        for i, step in enumerate(steps or [], start=1):
            workflow.steps.append(WorkflowStepModel(step_order=i, **step))
        return self._add(session, workflow)

    # ==================== Logs ====================

    def create_tool_audit(self, session: Session, **kwargs) -> ToolAuditLogModel:
        return self._add(session, ToolAuditLogModel(**kwargs))

    def get_tool_audits(self, session: Session, tenant_id: str) -> List[ToolAuditLogModel]:
        return (
            session.query(ToolAuditLogModel)
            .filter(ToolAuditLogModel.tenant_id == tenant_id)
            .order_by(desc(ToolAuditLogModel.created_at))
            .all()
        )

    def create_message_log(self, session: Session, **kwargs) -> MessageLogModel:
        return self._add(session, MessageLogModel(**kwargs))

    def get_message_logs(self, session: Session, tenant_id: str) -> List[MessageLogModel]:
        return (
            session.query(MessageLogModel)
            .filter(MessageLogModel.tenant_id == tenant_id)
            .order_by(desc(MessageLogModel.created_at))
            .all()
        )

    def create_knowledge_gap(self, session: Session, **kwargs) -> KnowledgeGapModel:
        return self._add(session, KnowledgeGapModel(**kwargs))

    def get_knowledge_gaps(self, session: Session, tenant_id: str) -> List[KnowledgeGapModel]:
        return (
            session.query(KnowledgeGapModel)
            .filter(KnowledgeGapModel.tenant_id == tenant_id)
            .all()
        )

    def create_knowledge_addition(self, session: Session, **kwargs) -> KnowledgeAdditionModel:
        return self._add(session, KnowledgeAdditionModel(**kwargs))

    def get_active_knowledge_additions(self, session: Session) -> List[KnowledgeAdditionModel]:
        return (
            session.query(KnowledgeAdditionModel)
            .filter(KnowledgeAdditionModel.is_active.is_(True))
            .order_by(KnowledgeAdditionModel.created_at)
            .all()
        )


_database: Optional[Database] = None


def get_database(database_url: str = "sqlite:///./sunny.db") -> Database:
    """Get or create the database instance."""
    global _database
    if _database is None or _database.database_url != database_url:
        _database = Database(database_url)
        _database.create_tables()
    return _database

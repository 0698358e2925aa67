import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


class Project(Base):
    __tablename__ = "projects"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active','completed','on_hold')",
            name="chk_project_status",
        ),
        Index("idx_projects_owner", "owner_id"),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    owner_id = Column(UUID_TYPE, nullable=False)
    name = Column(Text, nullable=False)
    client_name = Column(Text)
    address = Column(Text)
    status = Column(String(16), nullable=False, default="active", server_default=text("'active'"))
    contract_value = Column(Numeric(12, 2))
    start_date = Column(Date)
    end_date = Column(Date)
    ingest_token = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    budget_estimates = relationship(
        "BudgetCategoryEstimate",
        back_populates="project",
        cascade="all, delete-orphan",
    )
    documents = relationship(
        "ProjectDocument",
        back_populates="project",
        cascade="all, delete-orphan",
    )


class BudgetCategoryEstimate(Base):
    __tablename__ = "budget_category_estimates"
    __table_args__ = (
        UniqueConstraint("project_id", "category", name="uniq_budget_project_category"),
        CheckConstraint("estimated_amount >= 0", name="chk_budget_estimate_non_negative"),
        CheckConstraint(
            "category IN ('Labor','Materials','Equipment','Subcontractors','Other')",
            name="chk_budget_category",
        ),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    project_id = Column(UUID_TYPE, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    category = Column(String(32), nullable=False)
    estimated_amount = Column(Numeric(12, 2), nullable=False, default=0, server_default=text("0"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    project = relationship("Project", back_populates="budget_estimates")


class ProjectDocument(Base):
    __tablename__ = "project_documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','extracted','confirmed','rejected','failed')",
            name="chk_document_status",
        ),
        CheckConstraint(
            "document_type IS NULL OR document_type IN "
            "('invoice','quote','estimate','change_order','receipt','other','email')",
            name="chk_document_type",
        ),
        CheckConstraint(
            "NOT (document_type = 'email' AND parent_document_id IS NOT NULL)",
            name="chk_email_is_top_level",
        ),
        Index("idx_documents_project", "project_id"),
        Index("idx_documents_parent", "parent_document_id"),
        Index("idx_documents_status", "status"),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    project_id = Column(UUID_TYPE, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    owner_id = Column(UUID_TYPE, nullable=False)

    file_name = Column(Text, nullable=False)
    file_path = Column(Text, nullable=False)
    file_size = Column(Integer)
    mime_type = Column(String(128))

    document_type = Column(String(32))
    status = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    raw_extraction = Column(JSON_TYPE)

    # Denormalized from the last extraction / confirmation.
    vendor_name = Column(Text)
    document_number = Column(Text)
    document_date = Column(Date)
    due_date = Column(Date)
    total_amount = Column(Numeric(12, 2))

    confirmed_at = Column(DateTime(timezone=True))

    parent_document_id = Column(UUID_TYPE, ForeignKey("project_documents.id", ondelete="CASCADE"))
    email_from = Column(Text)
    email_to = Column(Text)
    email_subject = Column(Text)
    email_body = Column(Text)
    email_received_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    project = relationship("Project", back_populates="documents")
    line_items = relationship(
        "LineItem",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="LineItem.sort_order",
    )
    attachments = relationship(
        "ProjectDocument",
        back_populates="parent",
        cascade="all, delete",
        order_by="ProjectDocument.created_at",
    )
    parent = relationship("ProjectDocument", back_populates="attachments", remote_side=[id])


class LineItem(Base):
    __tablename__ = "line_items"
    __table_args__ = (
        CheckConstraint(
            "category IS NULL OR category IN ('Labor','Materials','Equipment','Subcontractors','Other')",
            name="chk_line_item_category",
        ),
        Index("idx_line_items_document", "document_id"),
        Index("idx_line_items_project", "project_id"),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    document_id = Column(UUID_TYPE, ForeignKey("project_documents.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(UUID_TYPE, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    description = Column(Text, nullable=False)
    quantity = Column(Numeric(10, 2))
    unit = Column(Text)
    unit_price = Column(Numeric(12, 2))
    total = Column(Numeric(12, 2), nullable=False)

    category = Column(String(32))
    cost_code = Column(Text)

    sort_order = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    document = relationship("ProjectDocument", back_populates="line_items")


class PromptExecution(Base):
    __tablename__ = "prompt_executions"
    __table_args__ = (
        Index("idx_prompt_exec_prompt", "prompt_id"),
        Index("idx_prompt_exec_document", "document_id"),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    prompt_id = Column(String(64), nullable=False)
    project_id = Column(UUID_TYPE, ForeignKey("projects.id", ondelete="SET NULL"))
    document_id = Column(UUID_TYPE, ForeignKey("project_documents.id", ondelete="SET NULL"))

    input_tokens = Column(Integer)
    output_tokens = Column(Integer)
    latency_ms = Column(Integer)

    raw_response = Column(Text)
    parsed_response = Column(JSON_TYPE)
    execution_meta = Column("metadata", JSON_TYPE, nullable=False, default=dict, server_default=text("'{}'"))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

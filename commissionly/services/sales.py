"""
Sales transactions: recording, listing and CSV import.

A new SALE is calculated right away. When no rule covers it the
transaction is kept and stays PENDING until rules are fixed and the
scheduler (or an explicit recalculation) picks it up.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commissionly.auth.context import RequestContext
from commissionly.models import (
    AuditAction,
    CalculationStatus,
    Client,
    CommissionCalculation,
    Organization,
    ProductCategory,
    Project,
    SalesTransaction,
    TransactionType,
    User,
    UserRole,
)
from commissionly.schemas.sales import SalesTransactionCreate
from commissionly.services.commission import BulkItemResult, calculate_for_transaction
from commissionly.services.errors import (
    CommissionEngineError,
    InvalidRequest,
    NoMatchingRule,
    PermissionDenied,
    ResourceNotFound,
)
from commissionly.utils.audit import log_action

logger = logging.getLogger(__name__)

CSV_REQUIRED_COLUMNS = ("amount", "date", "salesperson_email")


@dataclass
class SalesCreateResult:
    transaction: SalesTransaction
    calculation: Optional[CommissionCalculation] = None
    error: Optional[CommissionEngineError] = None

    @property
    def commission_status(self) -> CalculationStatus:
        if self.calculation is None:
            return CalculationStatus.PENDING
        return self.calculation.status


@dataclass
class ImportResult:
    rows: list[BulkItemResult] = field(default_factory=list)
    created: int = 0
    skipped: int = 0
    failed: int = 0


def commission_status(transaction: SalesTransaction) -> CalculationStatus:
    """Derived status of a transaction; PENDING while it has no calculation."""
    if transaction.calculation is None:
        return CalculationStatus.PENDING
    return transaction.calculation.status


async def _get_owned(db: AsyncSession, ctx: RequestContext, model, label: str, object_id: int):
    obj = await db.scalar(
        select(model).where(model.id == object_id, model.organization_id == ctx.organization_id)
    )
    if obj is None:
        raise ResourceNotFound(label, object_id)
    return obj


async def create_transaction(
    db: AsyncSession,
    ctx: RequestContext,
    data: SalesTransactionCreate,
) -> SalesCreateResult:
    """
    Record a transaction and, for a SALE, calculate its commission.

    Raises:
        PermissionDenied: a salesperson recording someone else's sale
        InvalidRequest: references that contradict organization data
        ResourceNotFound: referenced rows not in the organization
    """
    if ctx.role == UserRole.SALESPERSON and data.user_id != ctx.user_id:
        raise PermissionDenied("Salespeople can only record their own sales")

    user = await _get_owned(db, ctx, User, "User", data.user_id)
    if not user.is_active:
        raise InvalidRequest(f"User {user.id} is disabled")

    client_id = data.client_id
    if data.project_id is not None:
        project = await _get_owned(db, ctx, Project, "Project", data.project_id)
        if client_id is None:
            client_id = project.client_id
        elif project.client_id is not None and project.client_id != client_id:
            raise InvalidRequest(f"Project {project.id} belongs to another client")
    if client_id is not None:
        await _get_owned(db, ctx, Client, "Client", client_id)
    if data.product_category_id is not None:
        await _get_owned(db, ctx, ProductCategory, "Product category", data.product_category_id)

    parent = None
    if data.transaction_type == TransactionType.SALE:
        organization = await db.get(Organization, ctx.organization_id)
        if organization is not None and organization.require_projects and data.project_id is None:
            raise InvalidRequest("This organization requires a project on every sale")
    else:
        parent = await db.scalar(
            select(SalesTransaction)
            .options(selectinload(SalesTransaction.returns))
            .where(
                SalesTransaction.id == data.parent_transaction_id,
                SalesTransaction.organization_id == ctx.organization_id,
            )
        )
        if parent is None:
            raise ResourceNotFound("Sales transaction", data.parent_transaction_id)
        if parent.transaction_type != TransactionType.SALE:
            raise InvalidRequest(f"Parent transaction {parent.id} is not a SALE")

    transaction = SalesTransaction(
        organization_id=ctx.organization_id,
        amount=data.amount,
        transaction_date=data.transaction_date,
        transaction_type=data.transaction_type,
        parent=parent,
        project_id=data.project_id,
        client_id=client_id,
        product_category_id=data.product_category_id,
        user_id=user.id,
        invoice_number=data.invoice_number,
        description=data.description,
    )
    db.add(transaction)
    await db.flush()

    await log_action(
        db, ctx, AuditAction.CREATE_TRANSACTION,
        target_type="transaction", target_id=transaction.id,
        action_metadata={
            "type": transaction.transaction_type.value,
            "amount": str(transaction.amount),
        },
    )
    logger.info(
        f"{transaction.transaction_type.value} {transaction.id} recorded: "
        f"{transaction.amount} for user {user.id}"
    )

    result = SalesCreateResult(transaction=transaction)
    if transaction.transaction_type != TransactionType.SALE:
        return result

    try:
        result.calculation = await calculate_for_transaction(
            db, ctx, transaction.id, data.commission_plan_id
        )
    except NoMatchingRule as e:
        logger.warning(f"Transaction {transaction.id} left pending: {e.message}")
        result.error = e
    return result


async def get_transaction(db: AsyncSession, ctx: RequestContext, transaction_id: int) -> SalesTransaction:
    """Load a transaction; salespeople only see their own."""
    transaction = await db.scalar(
        select(SalesTransaction)
        .options(selectinload(SalesTransaction.calculation))
        .where(
            SalesTransaction.id == transaction_id,
            SalesTransaction.organization_id == ctx.organization_id,
        )
    )
    if transaction is None:
        raise ResourceNotFound("Sales transaction", transaction_id)
    if not ctx.can_manage and transaction.user_id != ctx.user_id:
        raise ResourceNotFound("Sales transaction", transaction_id)
    return transaction


async def list_transactions(
    db: AsyncSession,
    ctx: RequestContext,
    page: int = 1,
    per_page: int = 20,
    user_id: Optional[int] = None,
    transaction_type: Optional[TransactionType] = None,
    status: Optional[CalculationStatus] = None,
) -> tuple[list[SalesTransaction], int]:
    """Return (page of transactions, total count), newest first."""
    query = (
        select(SalesTransaction)
        .options(selectinload(SalesTransaction.calculation))
        .where(SalesTransaction.organization_id == ctx.organization_id)
    )

    if not ctx.can_manage:
        query = query.where(SalesTransaction.user_id == ctx.user_id)
    elif user_id is not None:
        query = query.where(SalesTransaction.user_id == user_id)

    if transaction_type is not None:
        query = query.where(SalesTransaction.transaction_type == transaction_type)

    if status is not None:
        query = query.outerjoin(
            CommissionCalculation,
            CommissionCalculation.sales_transaction_id == SalesTransaction.id,
        )
        if status == CalculationStatus.PENDING:
            query = query.where(
                SalesTransaction.transaction_type == TransactionType.SALE,
                CommissionCalculation.id.is_(None),
            )
        else:
            query = query.where(CommissionCalculation.status == status)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))

    query = query.order_by(SalesTransaction.transaction_date.desc(), SalesTransaction.id.desc())
    query = query.offset((page - 1) * per_page).limit(per_page)
    result = await db.execute(query)
    return list(result.scalars().all()), total or 0


# ── CSV import ────────────────────────────────────────────


def _parse_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _find_by_name(db: AsyncSession, ctx: RequestContext, model, name: str):
    return await db.scalar(
        select(model)
        .where(model.organization_id == ctx.organization_id, model.name == name)
        .order_by(model.id)
        .limit(1)
    )


async def _row_to_request(
    db: AsyncSession,
    ctx: RequestContext,
    row: dict,
) -> SalesTransactionCreate:
    try:
        amount = Decimal(row["amount"].strip())
    except (InvalidOperation, AttributeError) as e:
        raise InvalidRequest(f"Invalid amount '{row.get('amount')}'") from e
    try:
        transaction_date = _parse_date(row["date"])
    except (ValueError, AttributeError) as e:
        raise InvalidRequest(f"Invalid date '{row.get('date')}'") from e

    email = (row.get("salesperson_email") or "").strip()
    user = await db.scalar(
        select(User).where(User.organization_id == ctx.organization_id, User.email == email)
    )
    if user is None:
        raise InvalidRequest(f"Unknown salesperson '{email}'")

    project_id = client_id = None
    project_name = (row.get("project_name") or "").strip()
    if project_name:
        project = await _find_by_name(db, ctx, Project, project_name)
        if project is None:
            raise InvalidRequest(f"Unknown project '{project_name}'")
        project_id = project.id

    client_name = (row.get("client_name") or "").strip()
    if client_name:
        client = await _find_by_name(db, ctx, Client, client_name)
        if client is None:
            raise InvalidRequest(f"Unknown client '{client_name}'")
        client_id = client.id

    return SalesTransactionCreate(
        amount=amount,
        transaction_date=transaction_date,
        user_id=user.id,
        project_id=project_id,
        client_id=client_id,
        invoice_number=(row.get("invoice_number") or "").strip() or None,
        description=(row.get("description") or "").strip() or None,
    )


async def import_transactions_csv(
    db: AsyncSession,
    ctx: RequestContext,
    content: str,
) -> ImportResult:
    """
    Import SALE rows from CSV text.

    Each row is committed on its own. Rows whose invoice number was already
    imported for the organization are skipped.
    """
    reader = csv.DictReader(io.StringIO(content))
    missing = [column for column in CSV_REQUIRED_COLUMNS if column not in (reader.fieldnames or [])]
    if missing:
        raise InvalidRequest(f"CSV is missing column(s): {', '.join(missing)}")

    result = ImportResult()
    for line_number, row in enumerate(reader, start=2):
        invoice = (row.get("invoice_number") or "").strip()
        if invoice:
            duplicate = await db.scalar(
                select(SalesTransaction.id).where(
                    SalesTransaction.organization_id == ctx.organization_id,
                    SalesTransaction.invoice_number == invoice,
                )
            )
            if duplicate is not None:
                result.skipped += 1
                result.rows.append(
                    BulkItemResult(
                        id=line_number,
                        success=False,
                        status="skipped",
                        detail=f"invoice {invoice} already imported as transaction {duplicate}",
                    )
                )
                continue

        try:
            request = await _row_to_request(db, ctx, row)
            created = await create_transaction(db, ctx, request)
            await db.commit()
        except ValidationError as e:
            await db.rollback()
            result.failed += 1
            result.rows.append(
                BulkItemResult(id=line_number, success=False, error="invalid_row", detail=str(e.errors()[0]["msg"]))
            )
            continue
        except CommissionEngineError as e:
            await db.rollback()
            result.failed += 1
            result.rows.append(BulkItemResult.failed(line_number, e))
            continue
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"CSV row {line_number} failed: {e}")
            result.failed += 1
            result.rows.append(
                BulkItemResult(id=line_number, success=False, error="database_error", detail=str(e))
            )
            continue

        result.created += 1
        calculation = created.calculation
        result.rows.append(
            BulkItemResult(
                id=line_number,
                success=True,
                calculation_id=calculation.id if calculation else None,
                amount=calculation.amount if calculation else None,
                status=created.commission_status.value,
                detail=created.error.message if created.error else None,
            )
        )

    await log_action(
        db, ctx, AuditAction.IMPORT_TRANSACTIONS,
        target_type="transaction",
        action_metadata={
            "created": result.created,
            "skipped": result.skipped,
            "failed": result.failed,
        },
    )
    logger.info(
        f"CSV import for organization {ctx.organization_id}: {result.created} created, "
        f"{result.skipped} skipped, {result.failed} failed"
    )
    return result

"""
Batch Code Service for Atomic Code Generation

Codes are rendered from a template made of literal text and tokens:
    {YYYY} - four digit year of the production/receipt date
    {MMDD} - month and day of that date
    {SEQ}  - rolling per-tenant counter, zero padded

The counter lives in ``batch_code_sequences`` keyed by a scope key, e.g.
``stock_batches:finished_product:2024-01-02`` for daily templates, so
``FP-{YYYY}-{MMDD}-{SEQ}`` restarts at 001 every day.

USAGE:
    service = BatchCodeService(db, tenant_id)
    code = await service.generate("RM-{YYYY}-{MMDD}-{SEQ}", CodeScope.STOCK_BATCHES)
    # Returns: RM-2024-0101-001
"""
import logging
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import select, update, exists
from sqlalchemy.ext.asyncio import AsyncSession

from batchtrace.config import settings
from batchtrace.core.clock import Clock, SystemClock
from batchtrace.core.exceptions import (
    CodeGenerationExhaustedError, StoreConflictError
)
from batchtrace.database import insert_for
from batchtrace.models.batch import StockBatch
from batchtrace.models.batch_code_sequence import BatchCodeSequence
from batchtrace.models.production import ProductionBatch
from batchtrace.models.tenant import Tenant

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\{([^{}]*)\}")
SUPPORTED_TOKENS = {"YYYY", "MMDD", "SEQ"}


class CodeScope(str, Enum):
    """Table a generated code must be unique in."""
    STOCK_BATCHES = "stock_batches"
    PRODUCTION_BATCHES = "production_batches"


SCOPE_MODELS = {
    CodeScope.STOCK_BATCHES: StockBatch,
    CodeScope.PRODUCTION_BATCHES: ProductionBatch,
}


def parse_template(template: str) -> List[str]:
    """
    Return the tokens used by a template.

    Raises:
        ValueError: If the template is empty or uses an unknown token
    """
    if not template:
        raise ValueError("Batch code template must not be empty")
    tokens = TOKEN_PATTERN.findall(template)
    unknown = [t for t in tokens if t not in SUPPORTED_TOKENS]
    if unknown:
        raise ValueError(
            f"Unknown token(s) {', '.join('{' + t + '}' for t in unknown)} in template '{template}'. "
            f"Supported: {{YYYY}}, {{MMDD}}, {{SEQ}}"
        )
    return tokens


def render_code(template: str, on_date: date, seq: Optional[int] = None,
                padding: Optional[int] = None) -> str:
    """Substitute tokens in a template."""
    parse_template(template)
    padding = padding or settings.BATCH_CODE_SEQ_PADDING
    code = template.replace("{YYYY}", f"{on_date.year:04d}")
    code = code.replace("{MMDD}", f"{on_date.month:02d}{on_date.day:02d}")
    if seq is not None:
        code = code.replace("{SEQ}", str(seq).zfill(padding))
    return code


def build_scope_key(template: str, scope: str, on_date: date, kind: Optional[str] = None) -> str:
    """
    Derive the counter key for a template.

    The date part follows the finest date token the template renders so
    that two codes sharing a counter never render the same date text.
    """
    parts = [scope]
    if kind:
        parts.append(kind)
    if "{MMDD}" in template:
        parts.append(on_date.isoformat())
    elif "{YYYY}" in template:
        parts.append(f"{on_date.year:04d}")
    return ":".join(parts)


class BatchCodeService:
    """
    Service for generating unique batch codes.

    The sequence is advanced with a single atomic UPDATE ... RETURNING, so
    concurrent service instances never receive the same value. A code that
    already exists in the scope's table (e.g. a manual code that happened
    to match) is skipped and the next value tried, a bounded number of times.
    """

    def __init__(self, db: AsyncSession, tenant_id: UUID, clock: Optional[Clock] = None):
        self.db = db
        self.tenant_id = tenant_id
        self.clock = clock or SystemClock()

    async def get_template(self, kind: str) -> str:
        """
        Resolve the template for a code kind.

        Tenant settings (``batch_code_formats``) override the configured defaults.
        """
        tenant = await self.db.get(Tenant, self.tenant_id)
        if tenant and tenant.settings:
            override = (tenant.settings.get("batch_code_formats") or {}).get(kind)
            if override:
                return override
        if kind not in settings.BATCH_CODE_FORMATS:
            valid = ", ".join(settings.BATCH_CODE_FORMATS.keys())
            raise ValueError(f"Invalid code kind '{kind}'. Valid kinds: {valid}")
        return settings.BATCH_CODE_FORMATS[kind]

    async def _next_value(self, scope_key: str) -> int:
        """Atomically increment and return the counter for a scope key."""
        create_stmt = insert_for(self.db, BatchCodeSequence).values(
            id=uuid4(),
            tenant_id=self.tenant_id,
            scope_key=scope_key,
            current_value=0,
        ).on_conflict_do_nothing(index_elements=["tenant_id", "scope_key"])
        await self.db.execute(create_stmt)

        result = await self.db.execute(
            update(BatchCodeSequence)
            .where(
                BatchCodeSequence.tenant_id == self.tenant_id,
                BatchCodeSequence.scope_key == scope_key,
            )
            .values(
                current_value=BatchCodeSequence.current_value + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(BatchCodeSequence.current_value)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one()

    async def get_current_value(self, scope_key: str) -> int:
        """Last value handed out for a scope key (0 if none)."""
        result = await self.db.execute(
            select(BatchCodeSequence.current_value).where(
                BatchCodeSequence.tenant_id == self.tenant_id,
                BatchCodeSequence.scope_key == scope_key,
            )
        )
        return result.scalar_one_or_none() or 0

    async def code_exists(self, code: str, scope: CodeScope) -> bool:
        model = SCOPE_MODELS[CodeScope(scope)]
        result = await self.db.execute(
            select(exists().where(model.tenant_id == self.tenant_id, model.batch_code == code))
        )
        return bool(result.scalar())

    async def ensure_unique(self, code: str, scope: CodeScope) -> str:
        """
        Check a caller-supplied code.

        Raises:
            StoreConflictError: If the code is already taken for the tenant
        """
        code = code.strip()
        if not code:
            raise ValueError("Batch code must not be blank")
        if await self.code_exists(code, scope):
            raise StoreConflictError(f"Batch code '{code}' already exists in {CodeScope(scope).value}")
        return code

    async def generate(
        self,
        template: str,
        scope: CodeScope,
        on_date: Optional[date] = None,
        kind: Optional[str] = None,
    ) -> str:
        """
        Generate the next unique code for a template.

        Args:
            template: Code template, e.g. "FP-{YYYY}-{MMDD}-{SEQ}"
            scope: Table the code must be unique in
            on_date: Date rendered into the code (defaults to today)
            kind: Optional code kind, keeps e.g. finished product and
                byproduct counters apart within one scope

        Returns:
            The generated code

        Raises:
            ValueError: If the template uses an unknown token
            CodeGenerationExhaustedError: If every attempt collided
        """
        tokens = parse_template(template)
        scope = CodeScope(scope)
        on_date = on_date or self.clock.today()

        if "SEQ" not in tokens:
            # Nothing varies between attempts
            code = render_code(template, on_date)
            if await self.code_exists(code, scope):
                raise CodeGenerationExhaustedError(template, 1)
            return code

        scope_key = build_scope_key(template, scope.value, on_date, kind)
        max_attempts = settings.BATCH_CODE_MAX_RETRIES
        for attempt in range(1, max_attempts + 1):
            seq = await self._next_value(scope_key)
            code = render_code(template, on_date, seq)
            if not await self.code_exists(code, scope):
                return code
            logger.warning(
                f"Batch code collision on '{code}' (tenant {self.tenant_id}, "
                f"attempt {attempt}/{max_attempts}), trying next sequence value"
            )

        logger.error(f"Batch code generation exhausted for template '{template}' scope '{scope_key}'")
        raise CodeGenerationExhaustedError(template, max_attempts)

    async def generate_for_kind(
        self,
        kind: str,
        scope: CodeScope,
        on_date: Optional[date] = None,
    ) -> str:
        """Generate a code using the tenant's template for a code kind."""
        template = await self.get_template(kind)
        return await self.generate(template, scope, on_date=on_date, kind=kind)

    async def preview_next(
        self,
        template: str,
        scope: CodeScope,
        on_date: Optional[date] = None,
        kind: Optional[str] = None,
    ) -> str:
        """
        Preview what the next code would be without incrementing.

        Collisions with existing codes are not considered.
        """
        parse_template(template)
        on_date = on_date or self.clock.today()
        if "{SEQ}" not in template:
            return render_code(template, on_date)
        scope_key = build_scope_key(template, CodeScope(scope).value, on_date, kind)
        current = await self.get_current_value(scope_key)
        return render_code(template, on_date, current + 1)


async def generate_batch_code(
    template: str,
    tenant_id: UUID,
    scope: CodeScope,
    on_date: Optional[date] = None,
    db: Optional[AsyncSession] = None,
) -> str:
    """
    Generate a batch code in its own transaction (or the caller's session).

    When no session is passed the counter increment is committed before
    returning, so the code is reserved even if the caller never uses it.
    """
    if db is not None:
        return await BatchCodeService(db, tenant_id).generate(template, scope, on_date=on_date)

    from batchtrace.database import get_db_session

    async with get_db_session() as session:
        return await BatchCodeService(session, tenant_id).generate(template, scope, on_date=on_date)

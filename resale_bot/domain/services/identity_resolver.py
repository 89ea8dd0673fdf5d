"""
Identity Resolver

Maps the raw instance identifier of a webhook to exactly one tenant: the
admin or one seller. Every miss or ambiguity fails closed.
"""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from resale_bot.core.config import settings
from resale_bot.core.exceptions import AmbiguousInstanceError, TenantNotFoundError
from resale_bot.core.logging import get_logger
from resale_bot.db.models import GlobalConfig, SellerInstance, UserRoleAssignment

logger = get_logger(__name__)

ADMIN_ROLE = "admin"


class TenantKind:
    ADMIN = "admin"
    SELLER = "seller"


class MatchStrategy:
    ADMIN_INSTANCE = "admin_instance"
    ADMIN_ROLE = "admin_role"
    ADMIN_FLAG = "admin_flag"
    EXACT = "exact"
    DERIVED = "derived"
    ORIGINAL_NAME = "original_name"
    PARTIAL = "partial"


@dataclass
class ResolvedTenant:
    kind: str
    instance_name: str
    matched_by: str
    seller_instance: SellerInstance | None = None

    @property
    def is_admin(self) -> bool:
        return self.kind == TenantKind.ADMIN

    @property
    def seller_id(self) -> str | None:
        return self.seller_instance.seller_id if self.seller_instance else None


def has_seller_prefix(instance_name: str, prefix: str | None = None) -> bool:
    return instance_name.strip().lower().startswith(prefix or settings.SELLER_INSTANCE_PREFIX)


def derived_instance_name(seller_id: str, prefix: str | None = None) -> str:
    """seller_<8 primeiros hex do UUID>, nome gerado pelo onboarding"""
    return f"{prefix or settings.SELLER_INSTANCE_PREFIX}{seller_id.replace('-', '')[:8]}".lower()


class IdentityResolver:
    """Resolve a instância do webhook para admin ou revendedor"""

    def __init__(self, db: AsyncSession, *, seller_prefix: str | None = None) -> None:
        self.db = db
        self.seller_prefix = seller_prefix or settings.SELLER_INSTANCE_PREFIX

    async def resolve(
        self,
        instance_name: str,
        global_config: GlobalConfig | None,
        *,
        admin_requested: bool = False,
    ) -> ResolvedTenant:
        """
        Resolve the tenant for a webhook instance identifier.

        Args:
            instance_name: identifier as sent by the provider
            global_config: active provider config (admin instance name lives there)
            admin_requested: the ``?admin=true`` flag of the webhook URL

        Raises:
            TenantNotFoundError: no seller matches
            AmbiguousInstanceError: partial match with more than one candidate
        """
        name = instance_name.strip()
        if not name:
            raise TenantNotFoundError(instance_name, reason="No instance name")

        # prefixo de revendedor nunca chega à detecção de admin
        if not has_seller_prefix(name, self.seller_prefix):
            admin_match = await self._admin_strategy(name, global_config, admin_requested)
            if admin_match:
                logger.info(
                    "Instância resolvida para o admin",
                    extra_data={"instance": name, "matched_by": admin_match},
                )
                return ResolvedTenant(
                    kind=TenantKind.ADMIN, instance_name=name, matched_by=admin_match
                )

        seller_instance, matched_by = await self.find_seller_instance(name)
        logger.info(
            "Instância resolvida para revendedor",
            extra_data={
                "instance": name,
                "seller_id": seller_instance.seller_id,
                "matched_by": matched_by,
            },
        )
        return ResolvedTenant(
            kind=TenantKind.SELLER,
            instance_name=name,
            matched_by=matched_by,
            seller_instance=seller_instance,
        )

    # ── admin ──

    async def _admin_strategy(
        self,
        name: str,
        global_config: GlobalConfig | None,
        admin_requested: bool,
    ) -> str | None:
        if admin_requested:
            return MatchStrategy.ADMIN_FLAG

        configured = (global_config.instance_name or "").strip() if global_config else ""
        if configured:
            if configured.lower() == name.lower():
                return MatchStrategy.ADMIN_INSTANCE
            return None

        # sem instância configurada: instância de algum usuário admin
        admin_ids = select(UserRoleAssignment.user_id).where(UserRoleAssignment.role == ADMIN_ROLE)
        result = await self.db.execute(
            select(SellerInstance.id)
            .where(
                SellerInstance.seller_id.in_(admin_ids),
                func.lower(SellerInstance.instance_name) == name.lower(),
            )
            .limit(1)
        )
        if result.scalar_one_or_none() is not None:
            return MatchStrategy.ADMIN_ROLE
        return None

    # ── revendedor ──

    async def find_seller_instance(self, name: str) -> tuple[SellerInstance, str]:
        """Exato -> nome derivado -> nome original -> parcial com candidato único"""
        lowered = name.strip().lower()

        exact = await self._unique_match(
            func.lower(SellerInstance.instance_name) == lowered, name
        )
        if exact is not None:
            return exact, MatchStrategy.EXACT

        if has_seller_prefix(lowered, self.seller_prefix):
            result = await self.db.execute(select(SellerInstance).order_by(SellerInstance.id))
            for candidate in result.scalars():
                if derived_instance_name(candidate.seller_id, self.seller_prefix) == lowered:
                    return candidate, MatchStrategy.DERIVED

        original = await self._unique_match(
            func.lower(SellerInstance.original_instance_name) == lowered, name
        )
        if original is not None:
            return original, MatchStrategy.ORIGINAL_NAME

        result = await self.db.execute(
            select(SellerInstance).where(
                func.lower(SellerInstance.instance_name).contains(lowered, autoescape=True)
            )
        )
        candidates = list(result.scalars())
        if len(candidates) == 1:
            return candidates[0], MatchStrategy.PARTIAL
        if len(candidates) > 1:
            logger.warning(
                "Match parcial ambíguo, instância rejeitada",
                extra_data={
                    "instance": name,
                    "candidates": [c.instance_name for c in candidates],
                },
            )
            raise AmbiguousInstanceError(name, [c.instance_name for c in candidates])

        logger.warning("Instância não encontrada", extra_data={"instance": name})
        raise TenantNotFoundError(name)

    async def _unique_match(self, condition, name: str) -> SellerInstance | None:
        result = await self.db.execute(select(SellerInstance).where(condition).limit(2))
        rows = list(result.scalars())
        if len(rows) > 1:
            raise AmbiguousInstanceError(name, [r.instance_name for r in rows])
        return rows[0] if rows else None

"""
AccountDirectory -- the per-business chart of accounts.

Responsibility:
    Creates and maintains the hierarchical chart of accounts, returns it as
    a forest, and resolves logical account roles (cash, receivables,
    revenue, ...) to concrete accounts for the posting flows.

Architecture position:
    Kernel > Services.  Leaf component: depends on storage only.

Invariants enforced:
    - (business_id, code) is unique, including soft-deleted accounts.
    - A parent is an active, non-deleted account of the same business.
    - The tree is acyclic: move() refuses to create a cycle, and get_tree()
      fails closed with ValidationError if stored data contains one.
    - Accounts with ledger entries are never deleted (soft or hard).

Failure modes:
    - ValidationError on duplicate code, bad parent, unknown type, cycles.
    - NotFoundError when an account or role binding does not resolve.
"""

from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import AccountNode
from ledger_kernel.domain.roles import DEFAULT_CHART, AccountRole
from ledger_kernel.exceptions import NotFoundError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.journal import LedgerEntry
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_directory")


class AccountDirectory(BaseService[Account]):
    """
    Chart-of-accounts service.

    Contract:
        Every write flushes into the caller's transaction.  Reads honour the
        soft-delete predicate.
    """

    def create(
        self,
        business_id: UUID,
        code: str,
        name: str,
        account_type: AccountType | str,
        actor_id: UUID,
        parent_id: UUID | None = None,
        description: str | None = None,
    ) -> Account:
        """
        Create an account.

        Raises:
            ValidationError: duplicate code, unknown type or invalid parent.
        """
        code = (code or "").strip()
        if not code:
            raise ValidationError("Account code is required", field="code")
        if not (name or "").strip():
            raise ValidationError("Account name is required", field="name")
        try:
            account_type = AccountType(account_type)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown account type: {account_type!r}", field="account_type"
            ) from exc

        existing = self.session.execute(
            select(Account.id).where(
                Account.business_id == business_id,
                Account.code == code,
            ),
            execution_options={"include_deleted": True},
        ).first()
        if existing is not None:
            raise ValidationError(
                f"Account code '{code}' already exists for this business", field="code"
            )

        if parent_id is not None:
            parent = self.session.get(Account, parent_id)
            if parent is None or parent.is_deleted or parent.business_id != business_id:
                raise ValidationError(
                    f"Parent account {parent_id} not found in this business",
                    field="parent_id",
                )
            if not parent.is_active:
                raise ValidationError(
                    f"Parent account {parent.code} is inactive", field="parent_id"
                )

        account = Account(
            business_id=business_id,
            code=code,
            name=name.strip(),
            account_type=account_type.value,
            parent_id=parent_id,
            description=description,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            extra={
                "business_id": str(business_id),
                "account_id": str(account.id),
                "code": code,
                "account_type": account_type.value,
            },
        )
        return account

    def get(self, account_id: UUID, business_id: UUID | None = None) -> Account:
        account = self.session.get(Account, account_id)
        if account is None or account.is_deleted:
            raise NotFoundError("Account", str(account_id))
        if business_id is not None and account.business_id != business_id:
            raise NotFoundError("Account", str(account_id))
        return account

    def get_by_code(self, business_id: UUID, code: str) -> Account:
        account = self.session.execute(
            select(Account).where(
                Account.business_id == business_id,
                Account.code == code,
            )
        ).scalar_one_or_none()
        if account is None:
            raise NotFoundError("Account", f"{business_id}/{code}")
        return account

    def resolve_role(self, business_id: UUID, role: AccountRole) -> Account:
        """
        Resolve a logical role to the business's account for it.

        Raises:
            NotFoundError: the configured code does not exist for the business.
            ValidationError: the account exists but is inactive.
        """
        code = self.config.account_codes[AccountRole(role)]
        account = self.get_by_code(business_id, code)
        if not account.is_active:
            raise ValidationError(
                f"Account {code} for role '{AccountRole(role).value}' is inactive",
                field="account_id",
            )
        return account

    def funds_account(self, business_id: UUID, account_id: UUID | None = None) -> Account:
        """
        The bank or cash account money moves through.

        Falls back to the CASH role when ``account_id`` is None.

        Raises:
            ValidationError: the account is inactive or not a bank/cash account.
        """
        if account_id is None:
            return self.resolve_role(business_id, AccountRole.CASH)
        try:
            account = self.get(account_id, business_id)
        except NotFoundError as exc:
            raise ValidationError(
                f"Account {account_id} not found in this business", field="account_id"
            ) from exc
        if not account.accepts_funds or not account.is_active:
            raise ValidationError(
                f"Account {account.code} is not an active bank or cash account",
                field="account_id",
            )
        return account

    def get_tree(self, business_id: UUID, include_inactive: bool = True) -> list[AccountNode]:
        """
        Return the chart of accounts as a forest ordered by code.

        Accounts whose parent is missing or soft-deleted become roots.  The
        walk is iterative; any account that cannot be reached from a root
        sits on a parent cycle and the call fails.

        Raises:
            ValidationError: the stored parent links contain a cycle.
        """
        stmt = select(Account).where(Account.business_id == business_id)
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        accounts = self.session.execute(stmt.order_by(Account.code)).scalars().all()

        nodes = {
            a.id: AccountNode(
                id=a.id,
                code=a.code,
                name=a.name,
                account_type=a.account_type,
                is_active=a.is_active,
                parent_id=a.parent_id,
            )
            for a in accounts
        }

        roots: list[AccountNode] = []
        children_of: dict[UUID, list[AccountNode]] = {}
        for account in accounts:
            node = nodes[account.id]
            if account.parent_id is None or account.parent_id not in nodes:
                roots.append(node)
            else:
                children_of.setdefault(account.parent_id, []).append(node)

        visited: set[UUID] = set()
        stack = list(roots)
        while stack:
            node = stack.pop()
            if node.id in visited:
                continue
            visited.add(node.id)
            for child in children_of.get(node.id, []):
                node.children.append(child)
                stack.append(child)

        unreachable = sorted(nodes[i].code for i in nodes.keys() - visited)
        if unreachable:
            logger.error(
                "account_cycle_detected",
                extra={"business_id": str(business_id), "codes": unreachable},
            )
            raise ValidationError(
                f"Chart of accounts contains a parent cycle through: {', '.join(unreachable)}",
                field="parent_id",
            )
        return roots

    def move(self, account_id: UUID, new_parent_id: UUID | None, actor_id: UUID) -> Account:
        """Re-parent an account, refusing any move that would create a cycle."""
        account = self.get(account_id)
        if new_parent_id is not None:
            parent = self.get(new_parent_id, account.business_id)
            seen: set[UUID] = set()
            cursor: Account | None = parent
            while cursor is not None:
                if cursor.id == account.id:
                    raise ValidationError(
                        f"Moving {account.code} under {parent.code} would create a cycle",
                        field="parent_id",
                    )
                if cursor.id in seen:
                    raise ValidationError(
                        "Chart of accounts already contains a parent cycle",
                        field="parent_id",
                    )
                seen.add(cursor.id)
                cursor = (
                    self.session.get(Account, cursor.parent_id)
                    if cursor.parent_id is not None
                    else None
                )
        account.parent_id = new_parent_id
        account.updated_by_id = actor_id
        self.session.flush()
        return account

    def update(
        self,
        account_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        description: str | None = None,
    ) -> Account:
        """Rename or re-describe an account. Code and type never change."""
        account = self.get(account_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Account name is required", field="name")
            account.name = name.strip()
        if description is not None:
            account.description = description
        account.updated_by_id = actor_id
        self.session.flush()
        return account

    def deactivate(self, account_id: UUID, actor_id: UUID) -> Account:
        """Stop new postings to the account; history is untouched."""
        account = self.get(account_id)
        account.is_active = False
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "account_deactivated",
            extra={"account_id": str(account_id), "code": account.code},
        )
        return account

    def soft_delete(self, account_id: UUID, actor_id: UUID) -> Account:
        """
        Mark an unused account deleted.

        Raises:
            ValidationError: the account has ledger entries or active children.
        """
        account = self.get(account_id)

        entry_count = self.session.execute(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.account_id == account.id)
        ).scalar_one()
        if entry_count:
            raise ValidationError(
                f"Account {account.code} has {entry_count} ledger entries and cannot be deleted",
                field="account_id",
            )

        child = self.session.execute(
            select(Account.id).where(Account.parent_id == account.id).limit(1)
        ).first()
        if child is not None:
            raise ValidationError(
                f"Account {account.code} has child accounts", field="account_id"
            )

        account.deleted_at = self.clock.now()
        account.is_active = False
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "account_soft_deleted",
            extra={"account_id": str(account_id), "code": account.code},
        )
        return account

    def seed_default_chart(self, business_id: UUID, actor_id: UUID) -> list[Account]:
        """
        Create the default chart of accounts for a business.

        Codes that already exist are left alone, so the call can be repeated.
        """
        created: list[Account] = []
        by_code: dict[str, UUID] = {
            code: account_id
            for code, account_id in self.session.execute(
                select(Account.code, Account.id).where(Account.business_id == business_id)
            ).all()
        }
        for code, name, account_type, parent_code in DEFAULT_CHART:
            if code in by_code:
                continue
            account = self.create(
                business_id=business_id,
                code=code,
                name=name,
                account_type=account_type,
                actor_id=actor_id,
                parent_id=by_code.get(parent_code) if parent_code else None,
            )
            by_code[code] = account.id
            created.append(account)

        logger.info(
            "default_chart_seeded",
            extra={"business_id": str(business_id), "created_count": len(created)},
        )
        return created

import logging
import time
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from paybridge.models import (
    ALLOWED_TRANSITIONS,
    PaymentProvider,
    PaymentType,
    Transaction,
    TransactionStatus,
)
from paybridge.models.transaction import source_statuses


logger = logging.getLogger(__name__)


class InvalidTransition(Exception):
    def __init__(self, current: TransactionStatus, target: TransactionStatus):
        super().__init__(f"Cannot move transaction from {current.value} to {target.value}")
        self.current = current
        self.target = target


def new_prepare_id() -> int:
    return int(time.time() * 1000)


class TransactionStore:
    """Persistence for Transaction and the only place that changes its status.

    Status changes are conditional UPDATEs (``WHERE status IN (...)``) so two
    redelivered callbacks cannot both win the same transition.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_progressing(self, external_trans_id: str, provider: PaymentProvider = PaymentProvider.CLICK) -> Transaction | None:
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.provider == provider,
                Transaction.external_trans_id == external_trans_id,
                Transaction.status != TransactionStatus.PENDING,
            )
            .first()
        )

    def find_prepared(self, prepare_id: int, user_id: int, plan_id: int) -> Transaction | None:
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.prepare_id == prepare_id,
                Transaction.user_id == user_id,
                Transaction.plan_id == plan_id,
            )
            .order_by(Transaction.id.desc())
            .first()
        )

    def find_unactivated(self, limit: int = 100) -> list[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.status == TransactionStatus.COMPLETED,
                Transaction.activated_at.is_(None),
            )
            .order_by(Transaction.id.asc())
            .limit(limit)
            .all()
        )

    def create_prepared(
        self,
        *,
        external_trans_id: str,
        merchant_trans_id: str,
        user_id: int,
        plan_id: int,
        amount: int,
        payment_type: PaymentType,
        sign_time: str | None = None,
    ) -> Transaction:
        txn = Transaction(
            provider=PaymentProvider.CLICK,
            payment_type=payment_type,
            external_trans_id=external_trans_id,
            merchant_trans_id=merchant_trans_id,
            prepare_id=new_prepare_id(),
            user_id=user_id,
            plan_id=plan_id,
            amount=amount,
            status=TransactionStatus.PENDING,
            sign_time=sign_time,
        )
        self.db.add(txn)
        self.db.flush()
        # Accepted by prepare: the record leaves PENDING in the same commit.
        self._transition(txn, TransactionStatus.PROCESSING)
        self.db.commit()
        self.db.refresh(txn)
        logger.info(
            "Prepared transaction id=%s external=%s prepare_id=%s user_id=%s plan_id=%s",
            txn.id,
            external_trans_id,
            txn.prepare_id,
            user_id,
            plan_id,
        )
        return txn

    def create_pending(self, *, user_id: int, plan_id: int, amount: int, payment_type: PaymentType) -> Transaction:
        txn = Transaction(
            provider=PaymentProvider.CLICK,
            payment_type=payment_type,
            user_id=user_id,
            plan_id=plan_id,
            amount=amount,
            status=TransactionStatus.PENDING,
        )
        self.db.add(txn)
        self.db.commit()
        self.db.refresh(txn)
        txn.merchant_trans_id = str(txn.id)
        self.db.commit()
        return txn

    def complete(self, txn: Transaction, *, external_trans_id: str | None = None) -> bool:
        values = {}
        if external_trans_id is not None:
            values["external_trans_id"] = external_trans_id
        changed = self._transition(txn, TransactionStatus.COMPLETED, **values)
        self.db.commit()
        self.db.refresh(txn)
        return changed

    def fail(
        self,
        txn: Transaction,
        *,
        error_code: int | None = None,
        error_note: str | None = None,
        status: TransactionStatus = TransactionStatus.FAILED,
    ) -> bool:
        if status not in (TransactionStatus.FAILED, TransactionStatus.CANCELED):
            raise ValueError("fail() only moves transactions to failed or canceled")
        values = {"error_code": error_code}
        if error_note is not None:
            values["error_note"] = str(error_note)[:255]
        changed = self._transition(txn, status, **values)
        self.db.commit()
        self.db.refresh(txn)
        if changed:
            logger.info("Transaction id=%s marked %s error_code=%s", txn.id, status.value, error_code)
        return changed

    def claim_activation(self, txn: Transaction) -> bool:
        """Stamp ``activated_at`` if nobody has yet. Not committed here.

        The caller commits together with the subscription change, or rolls
        back to release the claim.
        """
        result = self.db.execute(
            update(Transaction)
            .where(Transaction.id == txn.id, Transaction.activated_at.is_(None))
            .values(activated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def _transition(self, txn: Transaction, target: TransactionStatus, **values) -> bool:
        current = TransactionStatus(txn.status)
        if current == target:
            return False
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(current, target)

        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.id == txn.id,
                Transaction.status.in_(source_statuses(target)),
            )
            .values(status=target, **values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

"""Domain record stores: mintings, LP NFTs and the dead-letter table.

Every write runs in its own short session and commits immediately, so an
item applied by a processor is durable before the next item of the same
stream is looked at, and a failed item never rolls back its neighbours.
"""

from typing import Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import RecordExistsError, RecordNotFoundError, StoreError
from .models import FailedEvent, Minting, Nft
from .utils import utc_now


class _SessionStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _first(self, stmt, what: str):
        with self._session_factory() as session:
            try:
                return session.execute(stmt).scalars().first()
            except SQLAlchemyError as exc:
                raise StoreError(f"cannot read {what}: {exc}") from exc

    def _insert(self, row, what: str):
        with self._session_factory() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise RecordExistsError(f"{what} already exists") from exc
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreError(f"cannot insert {what}: {exc}") from exc
        return row

    def _execute_write(self, stmt, what: str) -> int:
        with self._session_factory() as session:
            try:
                rowcount = session.execute(stmt).rowcount
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreError(f"cannot write {what}: {exc}") from exc
        return rowcount


class MintingStore(_SessionStore):
    """Minting records keyed by ``(txid, network_id)``."""

    def get(self, txid: str, network_id: int) -> Optional[Minting]:
        return self._first(
            select(Minting).where(Minting.txid == txid, Minting.network_id == network_id),
            f"minting {txid} on {network_id}",
        )

    def get_by_nft_id(self, nft_id: int, network_id: int) -> Optional[Minting]:
        return self._first(
            select(Minting)
            .where(Minting.nft_id == nft_id, Minting.network_id == network_id)
            .order_by(Minting.id),
            f"minting of nft {nft_id} on {network_id}",
        )

    def list_by_wallet(self, wallet_address: str) -> List[Minting]:
        with self._session_factory() as session:
            try:
                return list(session.execute(
                    select(Minting).where(Minting.wallet_address == wallet_address).order_by(Minting.id)
                ).scalars())
            except SQLAlchemyError as exc:
                raise StoreError(f"cannot read mintings of {wallet_address}: {exc}") from exc

    def add(self, minting: Minting) -> Minting:
        return self._insert(minting, f"minting {minting.txid} on {minting.network_id}")

    def mark_mint_completed(self, minting: Minting) -> None:
        """Set ``mint_completed`` only, guarded by the row version the caller read.

        The fulfillment side updates its own columns on the same row; a version
        mismatch means it wrote in between and this update is refused.
        """

        what = f"mint completion of {minting.txid} on {minting.network_id}"
        rows = self._execute_write(
            update(Minting)
            .where(Minting.id == minting.id, Minting.version == minting.version)
            .values(mint_completed=True, version=minting.version + 1)
            .execution_options(synchronize_session=False),
            what,
        )
        if rows != 1:
            raise StoreError(f"{what} lost a concurrent update (version {minting.version})")


class NftStore(_SessionStore):
    """LP NFT ownership keyed by ``(token_id, network_id)``."""

    def get(self, token_id: int, network_id: int) -> Optional[Nft]:
        return self._first(
            select(Nft).where(Nft.token_id == token_id, Nft.network_id == network_id),
            f"nft {token_id} on {network_id}",
        )

    def add(self, nft: Nft) -> Nft:
        return self._insert(nft, f"nft {nft.token_id} on {nft.network_id}")

    def update_owner(self, token_id: int, network_id: int, owner: str) -> None:
        rows = self._execute_write(
            update(Nft)
            .where(Nft.token_id == token_id, Nft.network_id == network_id)
            .values(owner=owner)
            .execution_options(synchronize_session=False),
            f"owner of nft {token_id} on {network_id}",
        )
        if rows != 1:
            raise RecordNotFoundError(f"nft {token_id} on {network_id} does not exist")

    def delete(self, token_id: int, network_id: int) -> None:
        self._execute_write(
            delete(Nft)
            .where(Nft.token_id == token_id, Nft.network_id == network_id)
            .execution_options(synchronize_session=False),
            f"nft {token_id} on {network_id}",
        )


class FailedEventStore(_SessionStore):
    """Dead letters: events a processor could not apply, kept for retry or manual remediation."""

    def record(self, stream_id: str, event_id: str, payload: dict, error_kind: str, detail: str) -> FailedEvent:
        with self._session_factory() as session:
            try:
                row = session.execute(
                    select(FailedEvent).where(FailedEvent.stream_id == stream_id, FailedEvent.event_id == event_id)
                ).scalar_one_or_none()
                if row is None:
                    row = FailedEvent(
                        stream_id=stream_id,
                        event_id=event_id,
                        payload=payload,
                        error_kind=error_kind,
                        detail=detail,
                        attempts=1,
                        resolved=False,
                    )
                    session.add(row)
                else:
                    row.attempts += 1
                    row.error_kind = error_kind
                    row.detail = detail
                    row.resolved = False
                    row.last_attempt_at = utc_now()
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreError(f"cannot record failed event {stream_id}/{event_id}: {exc}") from exc
        return row

    def pending(self, stream_ids: Iterable[str], max_attempts: int) -> List[FailedEvent]:
        with self._session_factory() as session:
            try:
                return list(session.execute(
                    select(FailedEvent)
                    .where(
                        FailedEvent.resolved.is_(False),
                        FailedEvent.stream_id.in_(list(stream_ids)),
                        FailedEvent.attempts < max_attempts,
                    )
                    .order_by(FailedEvent.id)
                ).scalars())
            except SQLAlchemyError as exc:
                raise StoreError(f"cannot read failed events: {exc}") from exc

    def unresolved(self) -> List[FailedEvent]:
        with self._session_factory() as session:
            try:
                return list(session.execute(
                    select(FailedEvent).where(FailedEvent.resolved.is_(False)).order_by(FailedEvent.id)
                ).scalars())
            except SQLAlchemyError as exc:
                raise StoreError(f"cannot read failed events: {exc}") from exc

    def mark_resolved(self, failed: FailedEvent) -> None:
        self._execute_write(
            update(FailedEvent)
            .where(FailedEvent.id == failed.id)
            .values(resolved=True, last_attempt_at=utc_now())
            .execution_options(synchronize_session=False),
            f"failed event {failed.id}",
        )

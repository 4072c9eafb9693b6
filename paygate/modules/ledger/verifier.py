import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from paygate.core.config import settings
from paygate.core.errors import LedgerUnavailable
from paygate.modules.ledger.client import LedgerClient

logger = logging.getLogger(__name__)

NATIVE_ASSET = "SOL"
TOKEN_ASSET = "USDC"
SUPPORTED_ASSETS = (NATIVE_ASSET, TOKEN_ASSET)

# Accept a settlement that moved at least 95% of the expected amount.
TOLERANCE_NUMERATOR = 95
TOLERANCE_DENOMINATOR = 100


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: Optional[str] = None
    kind: Optional[str] = None
    observed: Optional[int] = None


def meets_tolerance(observed: int, expected: int) -> bool:
    return observed * TOLERANCE_DENOMINATOR >= expected * TOLERANCE_NUMERATOR


def _account_keys(tx: Dict[str, Any]) -> List[str]:
    keys = tx.get("transaction", {}).get("message", {}).get("accountKeys", [])
    return [k.get("pubkey") if isinstance(k, dict) else str(k) for k in keys]


def _token_amount(entries: List[Dict[str, Any]], owner: str, mint: Optional[str]) -> Optional[int]:
    found = None
    for entry in entries:
        if entry.get("owner") != owner:
            continue
        if mint and entry.get("mint") != mint:
            continue
        ui_amount = entry.get("uiTokenAmount") or {}
        try:
            amount = int(ui_amount.get("amount", "0"))
        except (AttributeError, TypeError, ValueError):
            logger.warning(f"[Verifier] Unreadable token balance for {owner}: {ui_amount!r}")
            raise LedgerUnavailable("Ledger returned an unreadable token balance")
        found = (found or 0) + amount
    return found


class LedgerPaymentVerifier:
    """
    Confirms a settlement moved the expected amount to the expected recipient.
    Reads only; never touches intents or grants.
    """

    def __init__(self, client: LedgerClient, timeout: Optional[float] = None, token_mint: Optional[str] = None):
        self.client = client
        self.timeout = timeout if timeout is not None else settings.LEDGER_TIMEOUT_SECONDS
        self.token_mint = token_mint if token_mint is not None else settings.USDC_MINT_ADDRESS

    async def verify(self, settlement_ref: str, expected_amount: int, expected_recipient: str, asset_kind: str = NATIVE_ASSET) -> VerificationResult:
        try:
            tx = await asyncio.wait_for(self.client.get_transaction(settlement_ref), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Verifier] Ledger lookup for {settlement_ref} timed out after {self.timeout}s")
            raise LedgerUnavailable("Ledger did not answer in time; retry the confirmation")

        if not tx:
            return VerificationResult(False, "Transaction not found", kind="NotFound")

        if not isinstance(tx, dict):
            raise LedgerUnavailable("Ledger returned an unexpected transaction payload")
        meta = tx.get("meta")
        if not meta:
            return VerificationResult(False, "Transaction metadata not available", kind="NotFound")
        if not isinstance(meta, dict):
            raise LedgerUnavailable("Ledger returned an unexpected transaction payload")
        if meta.get("err"):
            return VerificationResult(False, f"Transaction failed: {meta['err']}", kind="TransactionFailed")

        if asset_kind == NATIVE_ASSET:
            keys = _account_keys(tx)
            if expected_recipient not in keys:
                return VerificationResult(False, "Recipient not found in transaction", kind="RecipientNotFound")
            index = keys.index(expected_recipient)
            try:
                observed = int(meta["postBalances"][index]) - int(meta["preBalances"][index])
            except (KeyError, IndexError, TypeError, ValueError):
                return VerificationResult(False, "Transaction balances unavailable", kind="NotFound")
        elif asset_kind == TOKEN_ASSET:
            post = _token_amount(meta.get("postTokenBalances") or [], expected_recipient, self.token_mint)
            if post is None:
                return VerificationResult(False, "Token transfer not found", kind="RecipientNotFound")
            pre = _token_amount(meta.get("preTokenBalances") or [], expected_recipient, self.token_mint) or 0
            observed = post - pre
        else:
            return VerificationResult(False, f"Unsupported asset kind: {asset_kind}", kind="UnsupportedAsset")

        if not meets_tolerance(observed, expected_amount):
            return VerificationResult(
                False,
                f"Insufficient payment. Expected {expected_amount} {asset_kind} base units, received {observed}",
                kind="InsufficientPayment",
                observed=observed,
            )

        return VerificationResult(True, observed=observed)

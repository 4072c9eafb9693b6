"""Tests for on-ledger receipt resolution and the locator routes."""
import pytest

from paygate.core import crypto
from paygate.core.errors import ConfigurationError, ContentNotFound, LedgerUnavailable, NotFound
from paygate.modules.receipts.resolver import ReceiptResolver

from conftest import BUYER, LOCATOR_KEY, PAYOUT

LOCATOR = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


@pytest.fixture
def resolver(ledger):
    return ReceiptResolver(ledger, static_key=LOCATOR_KEY, program_id="Program1111", timeout=1)


def _publish(ledger, resolver, creator_id="creator-1", items=None):
    if items is None:
        items = [{"id": "7", "price": 2_000_000, "encryptedLocator": crypto.encrypt_locator(LOCATOR, LOCATOR_KEY)}]
    ledger.accounts[resolver.derive_creator_address(creator_id)] = {"creatorWallet": PAYOUT, "content": items}


class TestDerivation:
    def test_deterministic(self, resolver):
        assert resolver.derive_address(BUYER, "7") == resolver.derive_address(BUYER, "7")

    def test_inputs_are_separated(self, resolver):
        addresses = {
            resolver.derive_address(BUYER, "7"),
            resolver.derive_address(BUYER, "8"),
            resolver.derive_address("other", "7"),
            resolver.derive_creator_address(BUYER),
            # Same eight bytes once the number is laid out little-endian
            resolver.derive_address(BUYER, "7016996765293437281"),
            resolver.derive_address(BUYER, "aaaaaaaa"),
        }
        assert len(addresses) == 6

    def test_only_canonical_decimals_are_numeric(self, resolver):
        assert resolver.derive_address(BUYER, "007") != resolver.derive_address(BUYER, "7")
        assert resolver.derive_address(BUYER, "0") != resolver.derive_address(BUYER, "00")
        assert resolver.derive_address(BUYER, str(2 ** 64)) != resolver.derive_address(BUYER, "0")

    @pytest.mark.parametrize("content_id", ["\u00b2", "\u0663", "\uff17", "1\u00b2"])
    def test_unicode_digits_are_text_ids(self, resolver, content_id):
        assert len(resolver.derive_address(BUYER, content_id)) == 64

    def test_program_id_matters(self, ledger, resolver):
        other = ReceiptResolver(ledger, static_key=LOCATOR_KEY, program_id="Program2222")
        assert other.derive_address(BUYER, "7") != resolver.derive_address(BUYER, "7")

    def test_no_concatenation_collisions(self, resolver):
        assert resolver.derive_address("ab", "c") != resolver.derive_address("a", "bc")


class TestResolver:
    async def test_no_receipt(self, resolver):
        check = await resolver.check_access(BUYER, "7")
        assert not check.has_access
        assert check.address == resolver.derive_address(BUYER, "7")

    async def test_receipt_grants_access(self, ledger, resolver):
        ledger.accounts[resolver.derive_address(BUYER, "7")] = {"buyer": BUYER, "contentId": 7}
        assert (await resolver.check_access(BUYER, "7")).has_access

    async def test_receipt_for_other_creator(self, ledger, resolver):
        ledger.accounts[resolver.derive_address(BUYER, "7")] = {"buyer": BUYER, "creator": "creator-9"}
        assert not (await resolver.check_access(BUYER, "7", "creator-1")).has_access
        assert (await resolver.check_access(BUYER, "7", "creator-9")).has_access

    async def test_resolve_locator(self, ledger, resolver):
        _publish(ledger, resolver)
        content_list = await resolver.fetch_content_list("creator-1")
        assert content_list.payout_address == PAYOUT
        assert resolver.resolve_locator(content_list, "7") == LOCATOR
        with pytest.raises(ContentNotFound):
            resolver.resolve_locator(content_list, "8")

    async def test_locator_as_byte_list(self, ledger, resolver):
        raw = list(bytes.fromhex(crypto.encrypt_locator(LOCATOR, LOCATOR_KEY)))
        _publish(ledger, resolver, items=[{"id": 7, "price": 1, "encryptedLocator": raw}])
        content_list = await resolver.fetch_content_list("creator-1")
        assert resolver.resolve_locator(content_list, "7") == LOCATOR

    async def test_unknown_creator(self, resolver):
        with pytest.raises(NotFound):
            await resolver.fetch_content_list("nobody")

    async def test_unexpected_layout(self, ledger, resolver):
        ledger.accounts[resolver.derive_creator_address("creator-1")] = {"content": [{"id": "7"}]}
        with pytest.raises(LedgerUnavailable):
            await resolver.fetch_content_list("creator-1")

    async def test_timeout(self, ledger, resolver):
        ledger.delay = 0.5
        resolver.timeout = 0.05
        with pytest.raises(LedgerUnavailable):
            await resolver.check_access(BUYER, "7")

    def test_missing_key(self, ledger):
        resolver = ReceiptResolver(ledger, static_key=None, program_id="Program1111")
        with pytest.raises(ConfigurationError):
            resolver.encrypt_locator(LOCATOR)


class TestAccessRoutes:
    def test_payment_required_without_receipt(self, client, ledger, services):
        _publish(ledger, services.receipts)
        response = client.get("/access/creator-1/7", params={"buyer": BUYER})
        assert response.status_code == 402
        assert response.headers["X-Content-Price"] == "2000000"
        assert response.headers["X-Payment-Address"] == PAYOUT
        body = response.json()
        assert body["price"] == 2_000_000
        assert body["contentId"] == "7"
        assert "locator" not in body

    def test_locator_with_receipt(self, client, ledger, services):
        _publish(ledger, services.receipts)
        ledger.accounts[services.receipts.derive_address(BUYER, "7")] = {"buyer": BUYER}
        response = client.get("/access/creator-1/7", params={"buyer": BUYER})
        assert response.status_code == 200
        assert response.json() == {"locator": LOCATOR}

    def test_unpublished_content(self, client, ledger, services):
        _publish(ledger, services.receipts)
        assert client.get("/access/creator-1/99", params={"buyer": BUYER}).status_code == 404

    def test_unicode_digit_content_id(self, client, ledger, services):
        _publish(ledger, services.receipts)
        response = client.get("/access/creator-1/\u00b2", params={"buyer": BUYER})
        assert response.status_code == 404
        assert response.json()["error"] == "ContentNotFound"
        assert client.get("/access/creator-1/\u00b2/address", params={"buyer": BUYER}).status_code == 200

    def test_zero_padded_id_is_other_content(self, client, ledger, services):
        _publish(ledger, services.receipts)
        ledger.accounts[services.receipts.derive_address(BUYER, "7")] = {"buyer": BUYER}
        assert client.get("/access/creator-1/007", params={"buyer": BUYER}).status_code == 404

    def test_buyer_required(self, client):
        assert client.get("/access/creator-1/7").status_code == 400

    def test_receipt_address(self, client, services):
        response = client.get("/access/creator-1/7/address", params={"buyer": BUYER})
        assert response.status_code == 200
        assert response.json()["address"] == services.receipts.derive_address(BUYER, "7")

    def test_encrypt_locator_round_trips(self, client, services):
        encrypted = client.post("/locators", json={"locator": LOCATOR}).json()["encryptedLocator"]
        assert crypto.decrypt_locator(encrypted, LOCATOR_KEY) == LOCATOR

import os
from dotenv import load_dotenv
from x10.perpetual.accounts import StarkPerpetualAccount
from x10.perpetual.trading_client import PerpetualTradingClient
from x10.perpetual.simple_client.simple_trading_client import BlockingTradingClient
from x10.perpetual.configuration import MAINNET_CONFIG, TESTNET_CONFIG

from utils import close_quietly

load_dotenv()


def endpoint_config_from_env():
    """Select the Extended endpoint set from ``SCALP_NETWORK`` (mainnet/testnet)."""
    network = (os.getenv("SCALP_NETWORK") or "mainnet").strip().lower()
    return TESTNET_CONFIG if network == "testnet" else MAINNET_CONFIG


def _require_env_vars() -> tuple[str, str, str, str]:
    """Fetch and validate required environment variables."""

    api_key = os.getenv("API_KEY")
    public_key = os.getenv("PUBLIC_KEY")
    private_key = os.getenv("PRIVATE_KEY")
    vault = os.getenv("VAULT")

    missing = [
        name
        for name, value in (
            ("API_KEY", api_key),
            ("PUBLIC_KEY", public_key),
            ("PRIVATE_KEY", private_key),
            ("VAULT", vault),
        )
        if not value
    ]
    if missing:
        raise RuntimeError(
            f"Environment variable(s) missing or empty: {', '.join(missing)}"
        )

    return api_key, public_key, private_key, vault

class TradingAccount:
    """Credentials plus the two SDK clients the live gateway needs.

    The blocking client places orders and lists markets (lot/tick filters);
    the async client reads balances.
    """

    def __init__(self, endpoint_config=None):
        api_key, public_key, private_key, vault = _require_env_vars()

        self.endpoint_config = endpoint_config or endpoint_config_from_env()
        self.vault = int(vault)

        self.stark_account = StarkPerpetualAccount(
            vault=self.vault,
            private_key=private_key,
            public_key=public_key,
            api_key=api_key,
        )

        self.async_client = PerpetualTradingClient(
            endpoint_config=self.endpoint_config,
            stark_account=self.stark_account,
        )

        self.blocking_client = BlockingTradingClient(
            endpoint_config=self.endpoint_config,
            account=self.stark_account,
        )

    def get_async_client(self) -> PerpetualTradingClient:
        return self.async_client

    def get_blocking_client(self) -> BlockingTradingClient:
        return self.blocking_client

    async def close(self) -> None:
        """Close underlying HTTP sessions for created clients."""
        for client in (self.async_client, self.blocking_client):
            await close_quietly(client)

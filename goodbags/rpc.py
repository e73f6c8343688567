from typing import Any, Dict, Optional

import httpx


class SolanaRpc:
    """Minimal async Solana JSON-RPC client used for connectivity checks."""

    def __init__(self, rpc_url: str, timeout_s: float = 10.0, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.rpc_url = rpc_url
        self.client = http_client or httpx.AsyncClient(timeout=timeout_s)

    async def close(self) -> None:
        await self.client.aclose()

    async def get_block_height(self, commitment: str = "confirmed") -> int:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getBlockHeight",
            "params": [{"commitment": commitment}],
        }
        data = await self._post(payload)
        return int(data["result"])

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RuntimeError(f"RPC error: {data['error']}")
        return data

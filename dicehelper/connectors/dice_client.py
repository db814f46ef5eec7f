"""Telegram Bot API connector that sends animated dice and reports the roll."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Union

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger("dicehelper.connectors.dice")

# Telegram's value range for each animated dice emoji.
DICE_DOMAINS: dict[str, tuple[int, int]] = {
    "🎲": (1, 6),
    "🎯": (1, 6),
    "🎳": (1, 6),
    "🏀": (1, 5),
    "⚽": (1, 5),
    "🎰": (1, 64),
}
# Unknown emoji: accept anything Telegram could possibly return.
FALLBACK_DOMAIN: tuple[int, int] = (1, 64)


def value_in_domain(emoji: str, value: int) -> bool:
    low, high = DICE_DOMAINS.get(emoji, FALLBACK_DOMAIN)
    return low <= value <= high


# ─────────────────────────────────────────────────────────────────────────────
# Outcomes
# ─────────────────────────────────────────────────────────────────────────────


class RollValue(BaseModel):
    """The dice landed; ``value`` is within the emoji's domain."""

    model_config = ConfigDict(frozen=True)

    value: int


class MalformedResult(BaseModel):
    """The send call returned normally but carried no usable dice value."""

    model_config = ConfigDict(frozen=True)

    raw: str


class ActionFailure(BaseModel):
    """The send call failed.  ``code`` is the remote error code, if any."""

    model_config = ConfigDict(frozen=True)

    description: str
    code: int | None = None


ActionOutcome = Union[RollValue, MalformedResult, ActionFailure]


class ActionProviderError(Exception):
    def __init__(self, message: str, code: int | None = None):
        self.code = code
        super().__init__(message)


class ActionProvider(Protocol):
    async def perform(self, chat_id: str, emoji: str) -> ActionOutcome: ...

    async def close(self) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# Telegram response envelopes
# ─────────────────────────────────────────────────────────────────────────────


class _Dice(BaseModel):
    emoji: str
    value: int


class _DiceMessage(BaseModel):
    message_id: int
    dice: _Dice


class _SendDiceEnvelope(BaseModel):
    ok: bool
    result: _DiceMessage | None = None
    error_code: int | None = None
    description: str | None = None


class TelegramDiceClient:
    """
    Sends dice through the Telegram Bot API.

    Protocol contract:
      POST {api_base}/bot{token}/sendDice
      Body: {"chat_id": "...", "emoji": "🎲"}
      Response: {"ok": true, "result": {"message_id": 1, "dice": {"emoji": "🎲", "value": 4}}}
            or: {"ok": false, "error_code": 400, "description": "Bad Request: chat not found"}
    """

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not token:
            raise ActionProviderError("Telegram bot token is required")
        self._token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=f"{self.api_base}/bot{token}",
            timeout=self.timeout,
            transport=transport,
        )

    def _redact(self, text: str) -> str:
        return text.replace(self._token, "***")

    async def get_me(self) -> str | None:
        """Return the bot's username, or None if it cannot be resolved."""
        try:
            resp = await self._client.post("/getMe")
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("getMe failed: %s", self._redact(str(exc)))
            return None
        if not isinstance(data, dict) or not data.get("ok"):
            logger.error("getMe rejected: %s", self._redact(str(data)))
            return None
        result = data.get("result") or {}
        return result.get("username")

    async def perform(self, chat_id: str, emoji: str) -> ActionOutcome:
        """Send one animated dice to *chat_id* and return the closed outcome."""
        logger.info("sendDice chat=%s emoji=%s", chat_id, emoji)
        try:
            resp = await self._client.post(
                "/sendDice", json={"chat_id": chat_id, "emoji": emoji}
            )
        except httpx.TimeoutException as exc:
            return ActionFailure(
                description=self._redact(f"timeout after {self.timeout:g}s ({type(exc).__name__})")
            )
        except httpx.RequestError as exc:
            return ActionFailure(description=self._redact(f"{type(exc).__name__}: {exc}"))
        except Exception as exc:
            # e.g. httpx.InvalidURL from a bad base URL; its message embeds the token.
            logger.error("sendDice could not be issued: %s", self._redact(repr(exc)))
            return ActionFailure(description=self._redact(f"{type(exc).__name__}: {exc}"))

        try:
            data: Any = resp.json()
        except ValueError:
            if resp.is_success:
                return MalformedResult(raw=self._redact(resp.text[:200]))
            return ActionFailure(description=f"HTTP {resp.status_code}", code=resp.status_code)

        if isinstance(data, dict) and data.get("ok") is False:
            logger.error("Telegram API error details: %s", self._redact(str(data)))
            return ActionFailure(
                description=self._redact(str(data.get("description") or f"HTTP {resp.status_code}")),
                code=data.get("error_code"),
            )
        if not resp.is_success:
            return ActionFailure(description=f"HTTP {resp.status_code}", code=resp.status_code)

        try:
            envelope = _SendDiceEnvelope.model_validate(data)
        except ValidationError:
            return MalformedResult(raw=self._redact(str(data)[:200]))

        if envelope.result is None or not value_in_domain(emoji, envelope.result.dice.value):
            return MalformedResult(raw=self._redact(str(data)[:200]))
        return RollValue(value=envelope.result.dice.value)

    async def close(self):
        await self._client.aclose()

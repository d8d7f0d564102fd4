"""Alert sinks. Delivery is at-most-once: a failed send is logged, never retried."""
import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import requests

from common.logger import get_logger
from common.models import AlertEvent, Signal
from config.settings import ALERT_DEVIATION, ALERT_WEBHOOK_URL


def should_alert(signal: Signal, deviation: float = ALERT_DEVIATION) -> bool:
    return signal.deviation >= deviation


def alert_for(signal: Signal) -> AlertEvent:
    direction = "bullish" if signal.final_score >= 50 else "bearish"
    return AlertEvent(
        asset_id=signal.asset_id,
        symbol=signal.symbol,
        final_score=signal.final_score,
        action=signal.recommendation.action,
        timeframe=signal.timeframe,
        reason=f"{direction} signal {signal.final_score:.1f} ({signal.regime.value}, risk {signal.risk_score:.0f})",
    )


class AlertSink(ABC):
    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def emit(self, event: AlertEvent) -> None:
        pass


class LogAlertSink(AlertSink):
    async def emit(self, event: AlertEvent) -> None:
        emoji = "🟢" if event.final_score >= 50 else "🔴"
        self.logger.info(
            f"{emoji} ALERT {event.symbol}: {event.action.value} / {event.timeframe.value}: {event.reason}"
        )


class WebhookAlertSink(AlertSink):
    def __init__(self, url: str = ALERT_WEBHOOK_URL, session: Optional[requests.Session] = None):
        super().__init__()
        self.url = url
        self.session = session or requests.Session()

    def _post(self, event: AlertEvent) -> None:
        resp = self.session.post(self.url, json=event.model_dump(mode="json"), timeout=10)
        resp.raise_for_status()

    async def emit(self, event: AlertEvent) -> None:
        try:
            await asyncio.to_thread(self._post, event)
        except requests.RequestException as e:
            self.logger.warning(f"Webhook alert for {event.symbol} not delivered: {e}")


class AlertFanout(AlertSink):
    def __init__(self, sinks: list[AlertSink]):
        super().__init__()
        self.sinks = sinks
        self.sent = 0

    async def emit(self, event: AlertEvent) -> None:
        self.sent += 1
        for sink in self.sinks:
            await sink.emit(event)


def build_alert_sink(webhook_url: str = ALERT_WEBHOOK_URL) -> AlertFanout:
    sinks: list[AlertSink] = [LogAlertSink()]
    if webhook_url:
        sinks.append(WebhookAlertSink(webhook_url))
    return AlertFanout(sinks)

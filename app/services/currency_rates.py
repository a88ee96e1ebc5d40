from __future__ import annotations

import threading
import time
from datetime import date, datetime, timedelta

import requests
from flask import current_app

from models import CurrencyRate

FIXER_LATEST_URL = "https://data.fixer.io/api/latest"
RATES_MAX_AGE = timedelta(hours=24)


class CurrencyRateError(RuntimeError):
    pass


def fetch_fixer_rates(api_key, timeout=10) -> dict:
    """Fetch today's rates from Fixer.io and rebase them on USD.

    The free plan only serves EUR-based rates, so 1 USD = 1/rates.USD EUR
    and 1 USD = rates.UAH/rates.USD UAH.
    """
    if not api_key:
        raise CurrencyRateError("FIXER_API_KEY is not set")
    try:
        response = requests.get(
            FIXER_LATEST_URL,
            params={"access_key": api_key, "symbols": "USD,UAH"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise CurrencyRateError(f"Failed to fetch currency rates: {exc}") from exc
    if response.status_code != 200:
        snippet = (response.text or "").strip()[:200]
        raise CurrencyRateError(f"Fixer.io returned {response.status_code}: {snippet}")

    try:
        data = response.json()
    except ValueError as exc:
        raise CurrencyRateError("Fixer.io returned invalid JSON") from exc
    if not data.get("success"):
        error = data.get("error") or {}
        raise CurrencyRateError(
            f"Fixer.io API error: {error.get('code')} - {error.get('info') or 'Unknown error'}"
        )
    rates = data.get("rates") or {}
    usd = rates.get("USD")
    uah = rates.get("UAH")
    if not usd or uah is None:
        raise CurrencyRateError("No rates returned from Fixer.io")
    return {"USD": 1.0, "EUR": 1 / usd, "UAH": uah / usd}


class CurrencyRateCache:
    """Process-wide holder of the latest rates, owned by the application."""

    def __init__(self, ttl_seconds=3600, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._rates = None
        self._stored_at = None

    def get(self):
        with self._lock:
            if self._rates is None:
                return None
            if self._clock() - self._stored_at >= self.ttl_seconds:
                self._rates = None
                return None
            return dict(self._rates)

    def set(self, rates):
        with self._lock:
            self._rates = dict(rates)
            self._stored_at = self._clock()

    def invalidate(self):
        with self._lock:
            self._rates = None
            self._stored_at = None


class CurrencyRateService:
    def __init__(self, session, cache, api_key=None, app=None, fetcher=fetch_fixer_rates):
        self.session = session
        self.cache = cache
        self.api_key = api_key
        self.app = app or current_app
        self._fetch = fetcher

    def get_latest_rates(self):
        return self.session.query(CurrencyRate).order_by(CurrencyRate.date.desc()).first()

    def needs_update(self, now=None) -> bool:
        latest = self.get_latest_rates()
        if latest is None:
            return True
        last_update = latest.updated_at or latest.created_at
        if last_update is None:
            return True
        now = now or datetime.utcnow()
        return now - last_update >= RATES_MAX_AGE

    def upsert_rates(self, rates, day=None) -> CurrencyRate:
        day = day or date.today()
        record = self.session.query(CurrencyRate).filter(CurrencyRate.date == day).first()
        if record is None:
            record = CurrencyRate(date=day)
            self.session.add(record)
        record.usd = rates.get("USD", 1.0)
        record.eur = rates["EUR"]
        record.uah = rates["UAH"]
        record.updated_at = datetime.utcnow()
        self.session.commit()
        return record

    def refresh(self) -> dict:
        """Fetch fresh rates unconditionally; errors propagate."""
        timeout = self.app.config.get("FIXER_TIMEOUT", 10)
        rates = self._fetch(self.api_key, timeout=timeout)
        record = self.upsert_rates(rates)
        self.cache.invalidate()
        payload = record.as_dict()
        self.cache.set(payload)
        self.app.logger.info("Currency rates updated for %s", payload["date"])
        return payload

    def get_latest_rates_or_update(self) -> dict | None:
        cached = self.cache.get()
        if cached is not None:
            return cached

        if self.api_key and self.needs_update():
            try:
                return self.refresh()
            except CurrencyRateError as exc:
                self.session.rollback()
                self.app.logger.warning("Failed to update currency rates, serving stored ones: %s", exc)

        latest = self.get_latest_rates()
        if latest is None:
            return None
        payload = latest.as_dict()
        self.cache.set(payload)
        return payload

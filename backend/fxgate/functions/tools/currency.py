"""Currency conversion.

Rates come from ExchangeRate-API when a key is configured, then the
keyless Frankfurter API, then a small built-in table.
"""
import logging
import zlib
from datetime import date as date_cls
from typing import Any, Dict, Optional

from fxgate.core.errors import FxError, UpstreamError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

EXCHANGERATE_API_URL = "https://api.exchangerate-api.com/v4"
FRANKFURTER_URL = "https://api.frankfurter.app"

CURRENCIES = {
    "USD": ("US Dollar", "$"),
    "EUR": ("Euro", "€"),
    "GBP": ("British Pound", "£"),
    "JPY": ("Japanese Yen", "¥"),
    "CNY": ("Chinese Yuan", "¥"),
    "INR": ("Indian Rupee", "₹"),
    "RUB": ("Russian Ruble", "₽"),
    "KRW": ("South Korean Won", "₩"),
    "TRY": ("Turkish Lira", "₺"),
    "BRL": ("Brazilian Real", "R$"),
    "CAD": ("Canadian Dollar", "C$"),
    "AUD": ("Australian Dollar", "A$"),
    "CHF": ("Swiss Franc", "CHF"),
    "NZD": ("New Zealand Dollar", "NZ$"),
    "SGD": ("Singapore Dollar", "S$"),
    "HKD": ("Hong Kong Dollar", "HK$"),
    "SEK": ("Swedish Krona", "kr"),
    "NOK": ("Norwegian Krone", "kr"),
    "DKK": ("Danish Krone", "kr"),
    "PLN": ("Polish Złoty", "zł"),
    "MXN": ("Mexican Peso", "Mex$"),
    "IDR": ("Indonesian Rupiah", "Rp"),
    "THB": ("Thai Baht", "฿"),
    "MYR": ("Malaysian Ringgit", "RM"),
    "ZAR": ("South African Rand", "R"),
    "AED": ("UAE Dirham", "د.إ"),
    "SAR": ("Saudi Riyal", "ر.س"),
    "PHP": ("Philippine Peso", "₱"),
    "VND": ("Vietnamese Dong", "₫"),
    "EGP": ("Egyptian Pound", "E£"),
}

MOCK_RATES = {
    ("USD", "EUR"): 0.92,
    ("EUR", "USD"): 1.09,
    ("USD", "GBP"): 0.79,
    ("GBP", "USD"): 1.27,
    ("USD", "JPY"): 148.50,
    ("JPY", "USD"): 0.0067,
    ("EUR", "GBP"): 0.86,
    ("GBP", "EUR"): 1.16,
    ("USD", "CAD"): 1.35,
    ("CAD", "USD"): 0.74,
    ("USD", "AUD"): 1.52,
    ("AUD", "USD"): 0.66,
    ("USD", "INR"): 83.15,
    ("INR", "USD"): 0.012,
    ("USD", "CNY"): 7.25,
    ("CNY", "USD"): 0.14,
}


def mock_rate(source: str, target: str, on: Optional[str] = None) -> float:
    """Table rate, its inverse, or a stable pseudo-rate in [0.5, 2.0)."""
    if source == target:
        return 1.0
    if (source, target) in MOCK_RATES:
        rate = MOCK_RATES[(source, target)]
    elif (target, source) in MOCK_RATES:
        rate = 1 / MOCK_RATES[(target, source)]
    else:
        seed = zlib.crc32(f"{source}_{target}".encode("ascii"))
        rate = 0.5 + (seed % 1500) / 1000
    if on:
        day = date_cls.fromisoformat(on).day
        rate *= 0.98 + (day % 10) * 0.004
    return round(rate, 6)


def _money(value: float) -> str:
    return f"{value:,.2f}"


def format_conversion(result: Dict[str, Any], detailed: bool) -> str:
    source, target = result["from"], result["to"]
    from_name, from_symbol = CURRENCIES[source]
    to_name, to_symbol = CURRENCIES[target]
    lines = [
        "💰 *Currency Conversion*",
        "",
        f"📅 *Date:* {result['date']}",
        "",
        f"💵 *{from_name} ({source})*",
        f"   {from_symbol}{_money(result['amount'])}",
        "",
        f"🔄 *{to_name} ({target})*",
        f"   {to_symbol}{_money(result['converted'])}",
        "",
        "📊 *Exchange Rate:*",
        f"   1 {source} = {result['rate']:.6f} {target}",
        f"   1 {target} = {result['inverseRate']:.6f} {source}",
    ]
    if detailed:
        lines += ["", "📈 *Rate Information:*", f"   Source: {result['source']}"]
    lines += ["", "🎮 *Convert more:* !currency amount:<number> from:<code> to:<code> date:<YYYY-MM-DD>"]
    return "\n".join(lines)


class CurrencyHandler(FunctionHandler):
    category = "tools"
    name = "currency"
    description = "Convert an amount between two currencies, optionally at a historical date"
    schema = {
        "amount": FieldSpec("number", required=False, min=0.000001),
        "from": FieldSpec("string", required=False, pattern=r"^[A-Za-z]{3}$"),
        "to": FieldSpec("string", required=False, pattern=r"^[A-Za-z]{3}$"),
        "date": FieldSpec("string", required=False, pattern=r"^\d{4}-\d{2}-\d{2}$"),
        "detailed": FieldSpec("boolean", required=False),
    }
    example = {"amount": 100, "from": "USD", "to": "EUR"}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        data = request.data
        amount = float(data.get("amount") if data.get("amount") is not None else 1)
        source = (data.get("from") or "USD").upper()
        target = (data.get("to") or "EUR").upper()
        on = data.get("date")
        detailed = data.get("detailed") in (True, "true")

        for field_name, code in (("from", source), ("to", target)):
            if code not in CURRENCIES:
                raise FxError(
                    f"Unsupported currency code: {code}",
                    code="INVALID_FORMAT",
                    details={"field": field_name, "supported": sorted(CURRENCIES)},
                )
        if on:
            try:
                date_cls.fromisoformat(on)
            except ValueError:
                raise FxError(f"Invalid date: {on}", code="INVALID_FORMAT", details={"field": "date"})

        rate, rate_date, source_name = await self.get_rate(source, target, on)
        converted = amount * rate
        result = {
            "amount": amount,
            "from": source,
            "to": target,
            "rate": rate,
            "inverseRate": round(1 / rate, 6),
            "converted": round(converted, 6),
            "date": rate_date,
            "source": source_name,
        }
        result["formatted"] = format_conversion(result, detailed)
        return success_response(result, f"Converted {source} to {target}")

    async def get_rate(self, source: str, target: str, on: Optional[str]):
        """Return ``(rate, date, provider)`` trying each provider in turn."""
        http = self.context.http
        timeout = self.context.lookup_timeout
        api_key = self.context.api_keys.exchangerate

        if source == target:
            return 1.0, on or date_cls.today().isoformat(), "Identity"

        if api_key:
            url = f"{EXCHANGERATE_API_URL}/history/{on}" if on else f"{EXCHANGERATE_API_URL}/latest/{source}"
            try:
                payload = await http.get_json(url, params={"apikey": api_key}, timeout=timeout, retries=0)
                return float(payload["rates"][target]), on or payload.get("date"), "ExchangeRate-API"
            except (UpstreamError, KeyError, TypeError, ValueError) as exc:
                logger.info("ExchangeRate-API failed for %s->%s: %s", source, target, exc)

        try:
            payload = await http.get_json(
                f"{FRANKFURTER_URL}/{on or 'latest'}",
                params={"from": source, "to": target},
                timeout=timeout,
                retries=0,
            )
            return float(payload["rates"][target]), payload.get("date"), "Frankfurter API"
        except (UpstreamError, KeyError, TypeError, ValueError) as exc:
            logger.info("Frankfurter failed for %s->%s: %s", source, target, exc)

        return mock_rate(source, target, on), on or date_cls.today().isoformat(), "Mock Exchange Rate"

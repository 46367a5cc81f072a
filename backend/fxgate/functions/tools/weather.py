"""Current weather and short forecast.

Providers are tried in order: OpenWeatherMap (needs ``openweather`` key),
WeatherAPI.com (needs ``weatherapi`` key), then a deterministic local
mock seeded from the location name so repeated calls agree.
"""
import logging
import random
import zlib
from collections import Counter, OrderedDict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fxgate.core.errors import UpstreamError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

OPENWEATHER_GEOCODE_URL = "https://api.openweathermap.org/geo/1.0/direct"
OPENWEATHER_CURRENT_URL = "https://api.openweathermap.org/data/2.5/weather"
OPENWEATHER_FORECAST_URL = "https://api.openweathermap.org/data/2.5/forecast"
WEATHERAPI_URL = "https://api.weatherapi.com/v1"

CONDITION_ICONS = {
    "Clear": "☀️",
    "Clouds": "☁️",
    "Cloudy": "☁️",
    "Rain": "🌧️",
    "Drizzle": "🌦️",
    "Snow": "❄️",
    "Thunderstorm": "⛈️",
    "Mist": "🌫️",
    "Fog": "🌫️",
}
MOCK_CONDITIONS = ["Clear", "Cloudy", "Rain", "Snow", "Thunderstorm"]
MOON_PHASES = [
    "New Moon", "Waxing Crescent", "First Quarter", "Waxing Gibbous",
    "Full Moon", "Waning Gibbous", "Last Quarter", "Waning Crescent",
]

# Any of these while reading an upstream payload means "malformed"
_PARSE_ERRORS = (AttributeError, KeyError, IndexError, TypeError, ValueError)


def weather_icon(condition: str) -> str:
    return CONDITION_ICONS.get(condition, "🌤️")


def _unit_labels(units: str) -> Dict[str, str]:
    if units == "imperial":
        return {"temperature": "°F", "wind": "mph"}
    return {"temperature": "°C", "wind": "m/s"}


class WeatherHandler(FunctionHandler):
    category = "tools"
    name = "weather"
    description = "Current weather (and optional forecast) for a city, zip code or coordinates"
    schema = {
        "location": FieldSpec("string", min_length=1, max_length=200),
        "units": FieldSpec("string", required=False, enum=("metric", "imperial")),
        "forecast": FieldSpec("boolean", required=False),
        "days": FieldSpec("integer", required=False, min=1, max=5),
        "detailed": FieldSpec("boolean", required=False),
    }
    example = {"location": "London", "units": "metric", "forecast": True, "days": 3}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        data = request.data
        location = data["location"].strip()
        units = data.get("units") or "metric"
        forecast = data.get("forecast") in (True, "true")
        detailed = data.get("detailed") in (True, "true")
        days = int(float(data.get("days") or 3))

        weather = await self.get_weather(location, units, forecast, days)
        weather["formatted"] = format_weather(weather, forecast, detailed)
        return success_response(weather, f"Weather for {weather['location']['name']}")

    async def get_weather(self, location: str, units: str, forecast: bool, days: int) -> Dict[str, Any]:
        keys = self.context.api_keys
        if keys.openweather:
            try:
                return await self._openweather(location, units, forecast, days, keys.openweather)
            except (UpstreamError, LookupError) + _PARSE_ERRORS as exc:
                logger.info("OpenWeatherMap failed for %r: %s", location, exc)
        if keys.weatherapi:
            try:
                return await self._weatherapi(location, units, forecast, days, keys.weatherapi)
            except (UpstreamError,) + _PARSE_ERRORS as exc:
                logger.info("WeatherAPI.com failed for %r: %s", location, exc)
        return mock_weather(location, units, forecast, days)

    async def _get(self, url: str, params: Dict[str, Any]) -> Any:
        return await self.context.http.get_json(url, params=params, timeout=self.context.lookup_timeout, retries=0)

    async def _openweather(self, location: str, units: str, forecast: bool, days: int, api_key: str) -> Dict[str, Any]:
        places = await self._get(OPENWEATHER_GEOCODE_URL, {"q": location, "limit": 1, "appid": api_key})
        if not places:
            raise LookupError(f"Location {location!r} not found")
        place = places[0]
        lat, lon = place["lat"], place["lon"]

        current = await self._get(
            OPENWEATHER_CURRENT_URL,
            {"lat": lat, "lon": lon, "units": units, "appid": api_key, "lang": "en"},
        )
        current_weather = {
            "temperature": round(current["main"]["temp"]),
            "feelsLike": round(current["main"]["feels_like"]),
            "condition": current["weather"][0]["main"],
            "description": current["weather"][0]["description"],
            "icon": current["weather"][0]["icon"],
            "humidity": current["main"]["humidity"],
            "pressure": current["main"]["pressure"],
            "windSpeed": current["wind"]["speed"],
            "windDirection": current["wind"].get("deg"),
            "visibility": current.get("visibility", 0) / 1000,
            "clouds": current.get("clouds", {}).get("all"),
            "sunrise": _clock_time(current["sys"].get("sunrise")),
            "sunset": _clock_time(current["sys"].get("sunset")),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        forecast_days = None
        if forecast:
            raw = await self._get(
                OPENWEATHER_FORECAST_URL,
                {"lat": lat, "lon": lon, "units": units, "appid": api_key, "cnt": days * 8},
            )
            forecast_days = _parse_openweather_forecast(raw, days)

        return {
            "location": {
                "name": place.get("name", location),
                "country": place.get("country"),
                "state": place.get("state"),
                "coordinates": {"lat": lat, "lon": lon},
            },
            "current": current_weather,
            "forecast": forecast_days,
            "units": _unit_labels(units)["temperature"],
            "windUnit": _unit_labels(units)["wind"],
            "source": "OpenWeatherMap",
        }

    async def _weatherapi(self, location: str, units: str, forecast: bool, days: int, api_key: str) -> Dict[str, Any]:
        endpoint = "forecast.json" if forecast else "current.json"
        data = await self._get(
            f"{WEATHERAPI_URL}/{endpoint}",
            {"key": api_key, "q": location, "days": days if forecast else 1, "aqi": "no", "alerts": "no"},
        )
        imperial = units == "imperial"
        cur = data["current"]
        first_day = ((data.get("forecast") or {}).get("forecastday") or [{}])[0]
        astro = first_day.get("astro", {})
        current_weather = {
            "temperature": round(cur["temp_f" if imperial else "temp_c"]),
            "feelsLike": round(cur["feelslike_f" if imperial else "feelslike_c"]),
            "condition": cur["condition"]["text"],
            "description": cur["condition"]["text"],
            "icon": f"https:{cur['condition']['icon']}",
            "humidity": cur["humidity"],
            "pressure": cur["pressure_mb"],
            "windSpeed": cur["wind_mph"] if imperial else round(cur["wind_kph"] / 3.6, 1),
            "windDirection": cur["wind_degree"],
            "visibility": cur["vis_km"],
            "clouds": cur["cloud"],
            "sunrise": astro.get("sunrise", "N/A"),
            "sunset": astro.get("sunset", "N/A"),
            "timestamp": cur["last_updated"],
        }

        forecast_days = None
        if forecast and data.get("forecast"):
            forecast_days = [
                {
                    "date": day["date"],
                    "maxTemp": round(day["day"]["maxtemp_f" if imperial else "maxtemp_c"]),
                    "minTemp": round(day["day"]["mintemp_f" if imperial else "mintemp_c"]),
                    "condition": day["day"]["condition"]["text"],
                    "icon": f"https:{day['day']['condition']['icon']}",
                    "humidity": day["day"]["avghumidity"],
                    "sunrise": day["astro"]["sunrise"],
                    "sunset": day["astro"]["sunset"],
                    "moonPhase": day["astro"]["moon_phase"],
                }
                for day in data["forecast"]["forecastday"]
            ]

        loc = data["location"]
        return {
            "location": {
                "name": loc["name"],
                "country": loc["country"],
                "state": loc.get("region"),
                "coordinates": {"lat": loc["lat"], "lon": loc["lon"]},
            },
            "current": current_weather,
            "forecast": forecast_days,
            "units": _unit_labels(units)["temperature"],
            "windUnit": _unit_labels(units)["wind"],
            "source": "WeatherAPI.com",
        }


def _clock_time(epoch: Optional[int]) -> str:
    if not epoch:
        return "N/A"
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%H:%M UTC")


def _parse_openweather_forecast(raw: Dict[str, Any], days: int) -> List[Dict[str, Any]]:
    by_day: "OrderedDict[str, Dict[str, list]]" = OrderedDict()
    for item in raw["list"]:
        day = item["dt_txt"].split(" ")[0]
        bucket = by_day.setdefault(day, {"temps": [], "conditions": [], "icons": [], "humidities": []})
        bucket["temps"].append(item["main"]["temp"])
        bucket["conditions"].append(item["weather"][0]["main"])
        bucket["icons"].append(item["weather"][0]["icon"])
        bucket["humidities"].append(item["main"]["humidity"])

    return [
        {
            "date": day,
            "maxTemp": round(max(bucket["temps"])),
            "minTemp": round(min(bucket["temps"])),
            "condition": Counter(bucket["conditions"]).most_common(1)[0][0],
            "icon": Counter(bucket["icons"]).most_common(1)[0][0],
            "humidity": round(sum(bucket["humidities"]) / len(bucket["humidities"])),
            "sunrise": "N/A",
            "sunset": "N/A",
            "moonPhase": "N/A",
        }
        for day, bucket in list(by_day.items())[:days]
    ]


def mock_weather(location: str, units: str, forecast: bool, days: int, today: Optional[date] = None) -> Dict[str, Any]:
    """Plausible weather derived from a hash of *location*."""
    rng = random.Random(zlib.crc32(location.lower().encode("utf-8")))
    labels = _unit_labels(units)
    condition = rng.choice(MOCK_CONDITIONS)
    temperature = rng.randint(10, 39)
    if units == "imperial":
        temperature = round(temperature * 9 / 5 + 32)

    current = {
        "temperature": temperature,
        "feelsLike": temperature + rng.randint(-3, 3),
        "condition": condition,
        "description": f"Mock {condition.lower()} weather",
        "icon": weather_icon(condition),
        "humidity": rng.randint(30, 89),
        "pressure": rng.randint(970, 1019),
        "windSpeed": round(rng.uniform(0, 10), 1),
        "windDirection": rng.randint(0, 359),
        "visibility": round(rng.uniform(5, 20), 1),
        "clouds": rng.randint(0, 99),
        "sunrise": "06:30 AM",
        "sunset": "07:45 PM",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    forecast_days = None
    if forecast:
        start = today or date.today()
        forecast_days = []
        for offset in range(days):
            day_condition = rng.choice(MOCK_CONDITIONS)
            forecast_days.append({
                "date": (start + timedelta(days=offset)).isoformat(),
                "maxTemp": temperature + rng.randint(0, 4),
                "minTemp": temperature - rng.randint(0, 4),
                "condition": day_condition,
                "icon": weather_icon(day_condition),
                "humidity": rng.randint(30, 89),
                "sunrise": "06:30 AM",
                "sunset": "07:45 PM",
                "moonPhase": rng.choice(MOON_PHASES),
            })

    return {
        "location": {
            "name": location,
            "country": "Mock Country",
            "state": "Mock State",
            "coordinates": {"lat": 0, "lon": 0},
        },
        "current": current,
        "forecast": forecast_days,
        "units": labels["temperature"],
        "windUnit": labels["wind"],
        "source": "Mock Weather Service",
    }


def format_weather(weather: Dict[str, Any], forecast: bool, detailed: bool) -> str:
    location = weather["location"]
    current = weather["current"]
    unit = weather["units"]
    wind_unit = weather.get("windUnit", "m/s")

    lines = [f"{weather_icon(current['condition'])} *Weather for {location['name']}*", ""]
    if location.get("state") and location["state"] != location["name"]:
        lines.append(f"📍 *Location:* {location['name']}, {location['state']}, {location['country']}")
    else:
        lines.append(f"📍 *Location:* {location['name']}, {location['country']}")
    lines += [
        "",
        f"🌡️ *Temperature:* {current['temperature']}{unit}",
        f"🤔 *Feels Like:* {current['feelsLike']}{unit}",
        f"☁️ *Condition:* {current['condition']}",
        f"💧 *Humidity:* {current['humidity']}%",
        f"🌬️ *Wind:* {current['windSpeed']} {wind_unit} at {current['windDirection']}°",
    ]
    if detailed:
        lines += [
            f"📊 *Pressure:* {current['pressure']} hPa",
            f"👁️ *Visibility:* {current['visibility']} km",
            f"☁️ *Cloud Cover:* {current['clouds']}%",
            f"🌅 *Sunrise:* {current['sunrise']}",
            f"🌇 *Sunset:* {current['sunset']}",
        ]

    if forecast and weather.get("forecast"):
        lines += ["", f"📅 *{len(weather['forecast'])}-Day Forecast:*", ""]
        for day in weather["forecast"]:
            day_name = date.fromisoformat(day["date"]).strftime("%a")
            lines.append(f"{weather_icon(day['condition'])} *{day_name} ({day['date'][-2:]})*")
            lines.append(f"   {day['minTemp']}{unit} - {day['maxTemp']}{unit}")
            lines.append(f"   {day['condition']}")
            if detailed:
                lines.append(f"   💧 {day['humidity']}% | 🌅 {day['sunrise']} | 🌇 {day['sunset']}")
            lines.append("")

    lines.append(f"✅ *Source:* {weather['source']}")
    if not forecast:
        lines.append(f"💡 *Get forecast:* !weather {location['name']} forecast:true days:3")
    if not detailed:
        lines.append(f"💡 *Detailed info:* !weather {location['name']} detailed:true")
    return "\n".join(lines)

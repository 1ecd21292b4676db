from __future__ import annotations

from dataclasses import dataclass
from xml.sax.saxutils import escape, quoteattr

from config.settings import get_settings


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str | None


def twilio_configured() -> bool:
    settings = get_settings()
    return bool(settings.twilio_account_sid and settings.twilio_auth_token)


def get_twilio_config() -> TwilioConfig:
    settings = get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise ValueError("Twilio credentials are not configured")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_number,
    )


def build_twilio_client():
    """Return a REST client, or ``None`` when credentials are absent."""

    if not twilio_configured():
        return None

    from twilio.rest import Client

    cfg = get_twilio_config()
    return Client(cfg.account_sid, cfg.auth_token)


def twiml_play_and_rejoin(*, audio_url: str, conference_name: str) -> str:
    """TwiML that plays a clip to the call, then dials it back into its conference."""

    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"<Play>{escape(audio_url)}</Play>"
        "<Dial>"
        f"<Conference>{escape(conference_name)}</Conference>"
        "</Dial>"
        "</Response>"
    )


def twiml_stream_and_conference(
    *,
    conference_name: str,
    stream_url: str | None,
    stream_parameters: dict[str, str],
    say_text: str | None = None,
    status_callback: str | None = None,
) -> str:
    """TwiML that forks inbound audio to the media stream and joins a conference."""

    parts = ["<?xml version=\"1.0\" encoding=\"UTF-8\"?>", "<Response>"]
    if say_text:
        parts.append(f"<Say>{escape(say_text)}</Say>")
    if stream_url:
        parts.append("<Start>")
        parts.append(f"<Stream url={quoteattr(stream_url)} track=\"inbound_track\">")
        for name, value in stream_parameters.items():
            parts.append(f"<Parameter name={quoteattr(name)} value={quoteattr(value)} />")
        parts.append("</Stream>")
        parts.append("</Start>")

    parts.append("<Dial>")
    if status_callback:
        parts.append(
            f"<Conference statusCallback={quoteattr(status_callback)}"
            " statusCallbackEvent=\"start end join leave\""
            " statusCallbackMethod=\"POST\">"
            f"{escape(conference_name)}</Conference>"
        )
    else:
        parts.append(f"<Conference>{escape(conference_name)}</Conference>")
    parts.append("</Dial>")
    parts.append("</Response>")
    return "".join(parts)

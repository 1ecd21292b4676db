"""Twilio Voice integration.

This module provides:
- Inbound call webhook (TwiML) that forks caller audio to the media stream and
  places the caller in a conference named after the call.
- Conference status callback that records the conference SID per call.
- Endpoint to dial an extra participant into an existing conference.
- Media Streams websocket feeding the call orchestrator.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from twilio.base.exceptions import TwilioException

from api.dependencies import get_orchestrator, get_twilio_client
from api.schemas import AddParticipantRequest, AddParticipantResponse
from config.settings import get_settings
from integrations.twilio_client import twiml_stream_and_conference
from integrations.twilio_streaming import decode_media_payload, parse_start, parse_twilio_ws_message

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

GREETING = "Connecting you now."


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _stream_url() -> str | None:
    settings = get_settings()
    if settings.public_ws_url:
        return settings.public_ws_url
    if settings.public_base_url:
        return _to_ws_url(f"{settings.public_base_url}/api/twilio/media")
    return None


def _conference_events_url() -> str | None:
    settings = get_settings()
    if not settings.public_base_url:
        return None
    return f"{settings.public_base_url}/api/twilio/conference-events"


@router.post("/voice/inbound")
async def twilio_inbound_call(
    request: Request,
    orchestrator=Depends(get_orchestrator),
) -> Response:
    form = await request.form()
    call_sid = str(form.get("CallSid") or "").strip()
    caller = str(form.get("From") or "").strip() or None
    conference_name = call_sid or "conference"
    LOGGER.info("Inbound call %s from %s", call_sid, caller)

    if call_sid:
        await orchestrator.registry.upsert(
            call_sid,
            caller=caller,
            conference_sid=None,
            conference_name=conference_name,
        )

    xml = twiml_stream_and_conference(
        conference_name=conference_name,
        stream_url=_stream_url(),
        stream_parameters={
            "callSid": call_sid,
            "from": caller or "unknown",
            "conferenceName": conference_name,
        },
        say_text=GREETING,
        status_callback=_conference_events_url(),
    )
    return _twiml_response(xml)


@router.post("/conference-events")
async def twilio_conference_events(
    request: Request,
    orchestrator=Depends(get_orchestrator),
) -> Response:
    form = await request.form()
    call_sid = str(form.get("CallSid") or "").strip()
    conference_sid = str(form.get("ConferenceSid") or "").strip()
    LOGGER.info(
        "Conference event %s call=%s conference=%s",
        form.get("StatusCallbackEvent"),
        call_sid,
        conference_sid,
    )

    if call_sid and conference_sid and await orchestrator.registry.get(call_sid) is not None:
        await orchestrator.registry.upsert(call_sid, conference_sid=conference_sid)
    return Response(status_code=200)


def _fetch_conference_name(twilio_client, conference_sid: str) -> str:
    return twilio_client.conferences(conference_sid).fetch().friendly_name


def _create_call(twilio_client, *, to: str, from_: str | None, twiml: str) -> str:
    call = twilio_client.calls.create(to=to, from_=from_, twiml=twiml)
    return str(call.sid)


@router.post("/participants", response_model=AddParticipantResponse)
async def add_participant(
    payload: AddParticipantRequest,
    orchestrator=Depends(get_orchestrator),
    twilio_client=Depends(get_twilio_client),
) -> AddParticipantResponse:
    if twilio_client is None:
        raise HTTPException(status_code=400, detail="Twilio client not configured")
    if not payload.to or not payload.conference_sid:
        raise HTTPException(status_code=400, detail="to and conferenceSid required")

    conference_name = payload.conference_name
    if not conference_name:
        try:
            conference_name = await asyncio.to_thread(
                _fetch_conference_name, twilio_client, payload.conference_sid
            )
        except (TwilioException, OSError) as exc:
            LOGGER.warning("Could not fetch conference name for %s, using SID: %s", payload.conference_sid, exc)
            conference_name = payload.conference_sid

    xml = twiml_stream_and_conference(
        conference_name=conference_name,
        stream_url=_stream_url(),
        stream_parameters={
            "from": payload.to,
            "conferenceSid": payload.conference_sid,
            "conferenceName": conference_name,
        },
    )

    try:
        call_sid = await asyncio.to_thread(
            _create_call,
            twilio_client,
            to=payload.to,
            from_=get_settings().twilio_number,
            twiml=xml,
        )
    except (TwilioException, OSError) as exc:
        LOGGER.exception("Adding participant %s failed", payload.to)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    await orchestrator.registry.upsert(
        call_sid,
        caller=payload.to,
        conference_sid=payload.conference_sid,
        conference_name=conference_name,
    )
    LOGGER.info("Participant %s dialed into %s as %s", payload.to, conference_name, call_sid)
    return AddParticipantResponse(call_sid=call_sid, conference_name=conference_name)


@router.websocket("/media")
async def twilio_media_stream(
    websocket: WebSocket,
    orchestrator=Depends(get_orchestrator),
) -> None:
    await websocket.accept()
    call_sid = websocket.query_params.get("callSid")
    caller = websocket.query_params.get("from")
    session = None
    stopped = False
    LOGGER.info("Media websocket connected (callSid=%s)", call_sid)

    try:
        while not stopped:
            message = parse_twilio_ws_message(await websocket.receive_text())
            if message is None:
                continue

            event = message.get("event")
            if event == "start":
                start = parse_start(message)
                call_sid = call_sid or start.call_sid
                if not call_sid:
                    LOGGER.warning("Media stream start without a call SID; ignoring stream")
                    continue
                session = await orchestrator.open_session(
                    call_sid,
                    caller=caller,
                    custom_parameters=start.custom_parameters,
                )
                LOGGER.info("Media start %s stream=%s", call_sid, start.stream_sid)
            elif event == "media":
                if session is None:
                    continue
                frame = decode_media_payload(message)
                if frame:
                    await session.relay_audio(frame)
            elif event == "stop":
                LOGGER.info("Media stop %s", call_sid)
                stopped = True
            else:
                LOGGER.debug("Media stream event %s for %s", event, call_sid)
    except WebSocketDisconnect:
        LOGGER.info("Media websocket disconnected (callSid=%s)", call_sid)
    finally:
        if session is not None:
            await orchestrator.close_session(session.call_sid)

    if stopped:
        await websocket.close()

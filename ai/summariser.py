"""
AI summaries for finished focus sessions.

The default backend is the summary proxy (a small worker in front of
the OpenAI API): the session's app usage and activity events are
POSTed, and the proxy either answers with a summary straight away or
with a job id that is polled until it is done. A direct OpenAI
backend can be selected instead with FOCUSD_SUMMARY_PROVIDER=openai.

Everything here runs off the tick thread. Failures end up in the
session row's ai_status/ai_error columns and nowhere else.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import requests
from openai import OpenAI

import config
from core.errors import PersistenceFailure, SummaryProxyFailure, SummaryTimeout
from tracking.analytics import friendly_app_name
from tracking.recorder import AI_STATUS_ERROR, AI_STATUS_RUNNING, SessionRecorder

logger = logging.getLogger(__name__)


def build_payload(recorder: SessionRecorder, session_id: int,
                  max_events: int = config.SUMMARY_MAX_EVENTS) -> Dict[str, Any]:
    """
    Assemble the proxy payload for a finalized session.

    Returns:
        {sessionId, startedAt, endedAt, durationMin, events, apps}

    Raises:
        SummaryProxyFailure: If the session does not exist.
    """
    session = recorder.get_session(session_id)
    if session is None:
        raise SummaryProxyFailure(f"Session {session_id} not found")

    events = [
        {
            "t": event["t_start"],
            "kind": event["kind"],
            "title": event["title"],
            "detail": event["detail"],
        }
        for event in recorder.get_events(session_id)[:max_events]
    ]
    apps = [
        {"bundleId": bundle_id, "seconds": seconds}
        for bundle_id, seconds in recorder.get_app_usage(session_id)
    ]
    return {
        "sessionId": session_id,
        "startedAt": session["started_at"],
        "endedAt": session["ended_at"] or session["started_at"],
        "durationMin": session["planned_minutes"],
        "events": events,
        "apps": apps,
    }


class SummaryProxyClient:
    """
    HTTP client for the summary proxy.

    POST <endpoint> with the payload; poll GET <endpoint>/<jobId> while
    the job is queued or running.
    """

    def __init__(self, endpoint: str = config.SUMMARY_ENDPOINT,
                 client_secret: str = config.SUMMARY_CLIENT_SECRET,
                 http: Optional[requests.Session] = None,
                 poll_interval: float = config.SUMMARY_POLL_INTERVAL,
                 max_polls: int = config.SUMMARY_POLL_ATTEMPTS,
                 timeout: float = config.SUMMARY_REQUEST_TIMEOUT):
        self.endpoint = endpoint.rstrip("/")
        self.client_secret = client_secret
        self.http = http or requests.Session()
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.client_secret:
            headers[config.SUMMARY_CLIENT_SECRET_HEADER] = self.client_secret
        return headers

    def summarise(self, payload: Dict[str, Any],
                  on_job: Optional[Callable[[str], None]] = None,
                  cancelled: Optional[threading.Event] = None) -> str:
        """
        Submit a session and wait for its summary.

        Args:
            payload: Output of build_payload().
            on_job: Called with the job id when the proxy answers asynchronously.
            cancelled: Set to abandon polling (app quit).

        Returns:
            The summary text.

        Raises:
            SummaryProxyFailure: Transport errors, HTTP errors, job errors.
            SummaryTimeout: The job was still running after max_polls.
        """
        try:
            response = self.http.post(self.endpoint, json=payload,
                                      headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SummaryProxyFailure(f"Summary request failed: {e}") from e
        body = self._parse(response)

        if isinstance(body, str):
            return body
        if body.get("summary"):
            return str(body["summary"]).strip()
        job_id = body.get("jobId")
        if not job_id:
            raise SummaryProxyFailure(f"Unexpected proxy response: {str(body)[:200]}")

        logger.info(f"Summary job {job_id} accepted; polling")
        if on_job:
            on_job(job_id)
        return self._poll(job_id, cancelled or threading.Event())

    def _poll(self, job_id: str, cancelled: threading.Event) -> str:
        url = f"{self.endpoint}/{job_id}"
        for attempt in range(self.max_polls):
            if cancelled.wait(self.poll_interval):
                raise SummaryProxyFailure("Summary polling cancelled")
            try:
                response = self.http.get(url, headers=self._headers(), timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                logger.warning(f"Summary poll {attempt + 1} failed: {e}")
                continue
            body = self._parse(response)
            if isinstance(body, str):
                return body

            status = body.get("status")
            if status == "done":
                summary = str(body.get("summary") or "").strip()
                if not summary:
                    raise SummaryProxyFailure("Summary job finished without text")
                return summary
            if status == "error":
                raise SummaryProxyFailure(f"Summary job failed: {body.get('error', 'unknown error')}")
            logger.debug(f"Summary job {job_id} status: {status}")

        raise SummaryTimeout(f"Summary job {job_id} not done after {self.max_polls} polls")

    @staticmethod
    def _parse(response: requests.Response):
        """JSON dict for JSON bodies, plain text otherwise."""
        if response.status_code >= 400:
            raise SummaryProxyFailure(f"Summary proxy returned HTTP {response.status_code}: {response.text[:200]}")
        try:
            body = response.json()
        except ValueError:
            text = response.text.strip()
            if not text:
                raise SummaryProxyFailure("Empty summary proxy response")
            return text
        if not isinstance(body, dict):
            raise SummaryProxyFailure(f"Unexpected proxy response: {str(body)[:200]}")
        return body


class OpenAISummariser:
    """
    Summarises a session by calling the OpenAI API directly.

    Only used when the proxy is bypassed; the API key then lives on
    this machine.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[Any] = None):
        """
        Initialize the summariser with an OpenAI client.

        Args:
            api_key: OpenAI API key (defaults to config.OPENAI_API_KEY)
            model: Model name (defaults to config.OPENAI_MODEL)
            client: Pre-built client, mainly for tests
        """
        self.api_key = api_key or config.OPENAI_API_KEY
        self.model = model or config.OPENAI_MODEL
        if client is not None:
            self.client = client
        elif self.api_key:
            self.client = OpenAI(api_key=self.api_key)
        else:
            logger.warning("OpenAI API key not found. Direct summaries disabled.")
            self.client = None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def summarise(self, payload: Dict[str, Any],
                  on_job: Optional[Callable[[str], None]] = None,
                  cancelled: Optional[threading.Event] = None) -> str:
        """
        Generate a summary, retrying with exponential backoff.

        Raises:
            SummaryProxyFailure: If the client is missing or all attempts fail.
        """
        if self.client is None:
            raise SummaryProxyFailure("OpenAI client not configured")
        cancelled = cancelled or threading.Event()
        prompt = self._create_prompt(payload)

        last_error: Optional[Exception] = None
        for attempt in range(config.OPENAI_MAX_RETRIES):
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": "You are a succinct productivity session summarizer."},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=0.4,
                    max_tokens=300,
                )
                content = (response.choices[0].message.content or "").strip()
                if content:
                    logger.info("Generated session summary with OpenAI")
                    return content
                last_error = SummaryProxyFailure("Empty completion")
            except Exception as e:
                last_error = e
                logger.warning(f"OpenAI API call attempt {attempt + 1} failed: {e}")

            if attempt < config.OPENAI_MAX_RETRIES - 1:
                wait_time = config.OPENAI_RETRY_DELAY * (2 ** attempt)
                if cancelled.wait(wait_time):
                    break
        raise SummaryProxyFailure(f"OpenAI summary failed: {last_error}")

    def _create_prompt(self, payload: Dict[str, Any]) -> str:
        """Compact prompt: planned length, top 5 apps, first 10 app switches, music."""
        lines = [
            "Summarize this focus session in 1-2 sentences. Be concise and focus on what the user accomplished.",
            "",
            f"Session: {payload.get('durationMin', 0)} minute focus session",
        ]

        apps: List[Dict[str, Any]] = payload.get("apps", [])
        app_lines = [
            f"- {friendly_app_name(app['bundleId'])}: {app['seconds'] // 60} min"
            for app in apps[:5]
            if app["seconds"] >= 60
        ]
        if app_lines:
            lines += ["", "App Usage:"] + app_lines

        switches = [e for e in payload.get("events", []) if e.get("kind") == config.EVENT_APP][:10]
        if switches:
            lines += ["", "Activity Timeline:"]
            for event in switches:
                name = friendly_app_name(event["title"])
                detail = event.get("detail")
                lines.append(f"{event['t']}: Switched to {name} - {detail}" if detail else
                             f"{event['t']}: Switched to {name}")

        tracks: List[str] = []
        for event in payload.get("events", []):
            if event.get("kind") != config.EVENT_MEDIA:
                continue
            detail = event.get("detail")
            track = f"- {event['title']} by {detail}" if detail else f"- {event['title']}"
            if track not in tracks:
                tracks.append(track)
        if tracks:
            lines += ["", "Music:"] + tracks[:5]

        lines += ["", "Provide a brief, positive summary of what was accomplished during this focus session."]
        prompt = "\n".join(lines)

        if len(prompt) > config.OPENAI_MAX_PROMPT_CHARS:
            prompt = (prompt[:config.OPENAI_MAX_PROMPT_CHARS]
                      + "...\n\nProvide a brief summary of this focus session.")
        return prompt


def create_summary_backend():
    """
    Pick the configured summary backend.

    Returns:
        A SummaryProxyClient or OpenAISummariser, or None when summaries
        are disabled (no proxy endpoint configured).
    """
    if config.SUMMARY_PROVIDER == "openai":
        backend = OpenAISummariser()
        return backend if backend.enabled else None
    if not config.SUMMARY_ENDPOINT:
        logger.info("No summary endpoint configured - AI summaries disabled")
        return None
    return SummaryProxyClient(endpoint=config.SUMMARY_ENDPOINT, client_secret=config.SUMMARY_CLIENT_SECRET)


class SummaryWorker:
    """
    Runs summary requests on daemon threads.

    request() returns immediately; the result (or error) is written to
    the recorder and reported through on_summary.
    """

    def __init__(self, recorder: SessionRecorder, backend=None,
                 on_summary: Optional[Callable[[int, Optional[str]], None]] = None):
        """
        Args:
            recorder: Where summaries and their status are stored.
            backend: Object with summarise(payload, on_job, cancelled) -> str.
                None disables summaries.
            on_summary: Called with (session_id, summary or None) when done.
        """
        self.recorder = recorder
        self.backend = backend
        self.on_summary = on_summary
        self._cancelled = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    def request(self, session_id: Optional[int]) -> Optional[threading.Thread]:
        """Start summarising a session in the background (fire-and-forget)."""
        if not self.enabled or session_id is None:
            return None
        thread = threading.Thread(target=self._run, args=(session_id,), daemon=True,
                                  name=f"summary-{session_id}")
        self._threads = [t for t in self._threads if t.is_alive()]
        self._threads.append(thread)
        thread.start()
        return thread

    def _run(self, session_id: int) -> None:
        summary: Optional[str] = None
        try:
            self.recorder.set_summary_status(session_id, AI_STATUS_RUNNING)
            payload = build_payload(self.recorder, session_id)
            summary = self.backend.summarise(
                payload,
                on_job=lambda job_id: self.recorder.set_summary_status(session_id, AI_STATUS_RUNNING, job_id=job_id),
                cancelled=self._cancelled,
            )
            if self._cancelled.is_set():
                return
            self.recorder.save_summary(session_id, summary)
            logger.info(f"Saved AI summary for session {session_id}")
        except (SummaryProxyFailure, PersistenceFailure) as e:
            summary = None
            if self._cancelled.is_set():
                return
            logger.warning(f"No summary for session {session_id}: {e}")
            self._record_error(session_id, e)
        except Exception as e:
            summary = None
            logger.error(f"Unexpected summary error for session {session_id}: {e}")
            self._record_error(session_id, e)

        if self.on_summary:
            try:
                self.on_summary(session_id, summary)
            except Exception as e:
                logger.debug(f"on_summary callback error: {e}")

    def _record_error(self, session_id: int, error: Exception) -> None:
        kind = "timeout" if isinstance(error, SummaryTimeout) else type(error).__name__
        try:
            self.recorder.set_summary_status(session_id, AI_STATUS_ERROR, error=f"{kind}: {error}")
        except PersistenceFailure as e:
            logger.warning(f"Could not record summary error for session {session_id}: {e}")

    def shutdown(self, timeout: float = 1.0) -> None:
        """Abandon in-flight requests; finalized sessions are untouched."""
        self._cancelled.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []

"""
Allow-list management for distraction detection.

Holds the globally allowed applications and the website rules that
are consulted for browsers during focus sessions. Persistence is an
injected backend so the store can be tested without touching disk.
"""

import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import config
from core.errors import InvalidDomain
from screen.domains import normalize_domain

logger = logging.getLogger(__name__)


@dataclass
class WebRule:
    """A website rule: normalised domain plus an enabled flag."""

    domain: str
    enabled: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, host: str) -> bool:
        """Exact host or any subdomain of it."""
        return host == self.domain or host.endswith("." + self.domain)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "domain": self.domain, "enabled": self.enabled}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebRule":
        return cls(
            domain=str(data.get("domain", "")),
            enabled=bool(data.get("enabled", True)),
            id=str(data.get("id") or uuid.uuid4()),
        )


@dataclass
class AllowList:
    """
    Snapshot of everything the user has allowed.

    allowed_apps are bundle identifiers allowed in every session.
    web_rules only matter for browsers that are not themselves allowed.
    """

    allowed_apps: Set[str] = field(default_factory=set)
    web_rules: List[WebRule] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert allow-list to dictionary for JSON serialization.

        Returns:
            Dictionary representation of allow-list settings.
        """
        return {
            "allowed_apps": sorted(self.allowed_apps),
            "web_rules": [rule.to_dict() for rule in self.web_rules],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AllowList":
        """
        Create an AllowList from a dictionary.

        Every stored domain is re-sanitised, and the legacy flat
        "allowed_websites" list is migrated into enabled rules.

        Args:
            data: Dictionary with allow-list settings

        Returns:
            New AllowList instance
        """
        rules: List[WebRule] = []
        for raw_rule in data.get("web_rules", []):
            rule = WebRule.from_dict(raw_rule)
            try:
                rule.domain = normalize_domain(rule.domain)
            except InvalidDomain:
                logger.warning(f"Dropping stored website rule with empty domain (id={rule.id})")
                continue
            rules.append(rule)

        if not rules:
            for legacy in data.get("allowed_websites", []):
                try:
                    rules.append(WebRule(domain=normalize_domain(legacy)))
                    logger.info(f"Migrated legacy allowed website '{legacy}'")
                except InvalidDomain:
                    continue

        return cls(
            allowed_apps=set(data.get("allowed_apps", [])),
            web_rules=_dedupe(rules),
        )


def _dedupe(rules: Iterable[WebRule]) -> List[WebRule]:
    """Collapse rules sharing a domain; enabled wins."""
    by_domain: Dict[str, WebRule] = {}
    ordered: List[WebRule] = []
    for rule in rules:
        existing = by_domain.get(rule.domain)
        if existing is None:
            by_domain[rule.domain] = rule
            ordered.append(rule)
        elif rule.enabled:
            existing.enabled = True
    return ordered


class JsonSettingsBackend:
    """
    Stores a settings dict as a JSON file.

    Writes are atomic (temp file + rename) so a crash mid-save never
    leaves a truncated settings file behind.
    """

    def __init__(self, settings_path: Path):
        """
        Initialize the backend.

        Args:
            settings_path: Path to the JSON settings file
        """
        self.settings_path = settings_path

    def load(self) -> Dict[str, Any]:
        """Return stored settings, or an empty dict if missing or unreadable."""
        if not self.settings_path.exists():
            return {}
        try:
            with open(self.settings_path, "r") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                logger.warning(f"Ignoring malformed settings file {self.settings_path}")
                return {}
            logger.info(f"Loaded settings from {self.settings_path}")
            return data
        except (json.JSONDecodeError, IOError, OSError) as e:
            logger.warning(f"Invalid settings file {self.settings_path}, using defaults: {e}")
            return {}

    def save(self, data: Dict[str, Any]) -> bool:
        """
        Save settings to file atomically.

        Returns:
            True if saved successfully, False otherwise
        """
        try:
            self.settings_path.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                suffix='.tmp',
                prefix=f"{self.settings_path.stem}_",
                dir=self.settings_path.parent
            )
            try:
                with os.fdopen(temp_fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.replace(temp_path, self.settings_path)
            except Exception:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise
            logger.debug(f"Saved settings to {self.settings_path}")
            return True
        except (IOError, OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save {self.settings_path}: {e}")
            return False


class InMemorySettingsBackend:
    """Settings backend that keeps everything in a dict (tests, --no-persist)."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(data or {})
        self.save_count = 0

    def load(self) -> Dict[str, Any]:
        return json.loads(json.dumps(self.data))

    def save(self, data: Dict[str, Any]) -> bool:
        self.data = json.loads(json.dumps(data))
        self.save_count += 1
        return True


class AllowListStore:
    """
    Thread-safe owner of the allow-list.

    User edits (menu bar thread) and tick evaluation (engine thread)
    go through the same lock. Every mutation is persisted immediately
    and is visible to the next tick.
    """

    def __init__(self, backend=None, self_bundle_id: str = config.SELF_BUNDLE_ID):
        """
        Load the allow-list from the backend.

        Args:
            backend: Object with load() -> dict and save(dict) -> bool.
                Defaults to the JSON file at config.ALLOWLIST_FILE.
            self_bundle_id: Bundle id of this app, always allowed.
        """
        self._backend = backend if backend is not None else JsonSettingsBackend(config.ALLOWLIST_FILE)
        self.self_bundle_id = self_bundle_id
        self._lock = threading.RLock()
        self._allow_list = AllowList.from_dict(self._backend.load())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_application_allowed(self, application_id: str, session_allowed: Iterable[str] = ()) -> bool:
        """
        Check an application against the allow-list.

        Args:
            application_id: Bundle identifier of the foreground app.
            session_allowed: Apps allowed for the current session only.

        Returns:
            True for this app itself, session-allowed apps and globally
            allowed apps.
        """
        if application_id == self.self_bundle_id:
            return True
        if application_id in session_allowed:
            return True
        with self._lock:
            return application_id in self._allow_list.allowed_apps

    def is_website_allowed(self, host: str) -> bool:
        """True if any enabled rule matches the (normalised) host."""
        if not host:
            return False
        with self._lock:
            return any(rule.enabled and rule.matches(host) for rule in self._allow_list.web_rules)

    @property
    def allowed_apps(self) -> Set[str]:
        with self._lock:
            return set(self._allow_list.allowed_apps)

    @property
    def web_rules(self) -> List[WebRule]:
        """Copies of the current rules, in insertion order."""
        with self._lock:
            return [WebRule(domain=r.domain, enabled=r.enabled, id=r.id) for r in self._allow_list.web_rules]

    def find_rule(self, domain: str) -> Optional[WebRule]:
        """Look up a rule by raw or normalised domain."""
        try:
            normalized = normalize_domain(domain)
        except InvalidDomain:
            return None
        for rule in self.web_rules:
            if rule.domain == normalized:
                return rule
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_domain_rule(self, raw_input: str) -> Optional[WebRule]:
        """
        Allow a website.

        Malformed input is dropped silently. An existing rule for the
        same domain is re-enabled instead of being duplicated.

        Args:
            raw_input: Domain or URL as typed by the user.

        Returns:
            The added or re-enabled rule, or None if input was invalid.
        """
        try:
            domain = normalize_domain(raw_input)
        except InvalidDomain:
            logger.debug(f"Ignoring invalid website input: {raw_input!r}")
            return None

        with self._lock:
            for rule in self._allow_list.web_rules:
                if rule.domain == domain:
                    rule.enabled = True
                    logger.info(f"Re-enabled website rule: {domain}")
                    break
            else:
                rule = WebRule(domain=domain)
                self._allow_list.web_rules.append(rule)
                logger.info(f"Added website rule: {domain}")
            self._save()
            return WebRule(domain=rule.domain, enabled=rule.enabled, id=rule.id)

    def toggle_rule(self, rule_id: str) -> bool:
        """
        Flip a rule's enabled flag.

        Returns:
            True if the rule existed, False otherwise (no-op).
        """
        with self._lock:
            for rule in self._allow_list.web_rules:
                if rule.id == rule_id:
                    rule.enabled = not rule.enabled
                    logger.info(f"Website rule {rule.domain} {'enabled' if rule.enabled else 'disabled'}")
                    self._save()
                    return True
        return False

    def remove_rule(self, rule_id: str) -> bool:
        """
        Delete a rule.

        Returns:
            True if the rule was removed, False if not found (no-op).
        """
        with self._lock:
            before = len(self._allow_list.web_rules)
            self._allow_list.web_rules = [r for r in self._allow_list.web_rules if r.id != rule_id]
            if len(self._allow_list.web_rules) == before:
                return False
            logger.info(f"Removed website rule {rule_id}")
            self._save()
            return True

    def toggle_application(self, application_id: str) -> bool:
        """
        Add or remove an app from the global allow set.

        Returns:
            True if the app is now allowed, False if it was removed.
        """
        with self._lock:
            apps = self._allow_list.allowed_apps
            if application_id in apps:
                apps.discard(application_id)
                now_allowed = False
            else:
                apps.add(application_id)
                now_allowed = True
            logger.info(f"App {application_id} {'allowed' if now_allowed else 'no longer allowed'} globally")
            self._save()
            return now_allowed

    def _save(self) -> None:
        """Persist the current allow-list (caller holds the lock)."""
        if not self._backend.save(self._allow_list.to_dict()):
            logger.warning("Allow-list change not persisted; it stays active for this run")

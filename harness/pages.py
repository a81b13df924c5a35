"""
Page Object Registry.

A Page Object maps logical element names to locators and exposes semantic
actions (``login``, ``add_to_cart``) built from them. Unlike a classic
``BasePage`` subclass holding a live ``page`` attribute, a page here is a
stateless value: locators are plain data, actions are free functions, and
the browser session is passed in explicitly at call time through a
``PageContext``. One definition can therefore be shared by every worker
while each worker's element handles stay inside its own session.

Key Concepts Demonstrated:
- Page Object Model without hidden shared state
- Lazy locator resolution (nothing touches the browser at registration)
- data-testid as the preferred locator strategy
- Backend failures surfaced as ``ActionFailure`` with page/action context

Example::

    login = PageDefinition("login", path="/login", locators={
        "username": by_test_id("login-username-input"),
        "password": by_test_id("login-password-input"),
        "submit": by_test_id("login-submit"),
    })

    @login.action
    def sign_in(ctx, username, password):
        ctx.fill("username", username)
        ctx.fill("password", password)
        ctx.click("submit")

    registry.register("login", login)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Union

from harness.backends.base import BrowserSession, Locator
from harness.errors import ActionFailure, UnknownActionError, UnknownPageError

logger = logging.getLogger(__name__)

# A locator is either declarative data or a closure resolving against a session.
LocatorSpec = Union[Locator, Callable[[BrowserSession], Any]]
Action = Callable[..., Any]


def by_test_id(test_id: str) -> Locator:
    return Locator("test_id", test_id)


def by_css(selector: str) -> Locator:
    return Locator("css", selector)


def by_text(text: str, exact: bool = False) -> Locator:
    return Locator("text", text, {"exact": exact})


def by_role(role: str, name: str | None = None) -> Locator:
    return Locator("role", role, {"name": name} if name else {})


def by_label(label: str) -> Locator:
    return Locator("label", label)


def join_url(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


@dataclass(frozen=True)
class PageObject:
    """
    Immutable page definition.

    Attributes:
        name: Registry key.
        locators: Element alias -> locator (data or resolution closure).
        actions: Action name -> function ``(ctx, **args)``.
        path: URL path of the page relative to the base URL.
    """

    name: str
    locators: Mapping[str, LocatorSpec] = field(default_factory=dict)
    actions: Mapping[str, Action] = field(default_factory=dict)
    path: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "locators", MappingProxyType(dict(self.locators)))
        object.__setattr__(self, "actions", MappingProxyType(dict(self.actions)))

    def find_action(self, name: str) -> Action | None:
        return self.actions.get(name) or BASE_ACTIONS.get(name)


class PageContext:
    """
    Per-call view of a page bound to one session.

    Created fresh for every action invocation and never stored, so nothing
    outlives the call except what the action returns.
    """

    def __init__(self, page: PageObject, session: BrowserSession, base_url: str):
        self.page = page
        self.session = session
        self.base_url = base_url

    def element(self, alias: str) -> Any:
        """Resolve ``alias`` against the live session."""
        try:
            spec = self.page.locators[alias]
        except KeyError:
            raise KeyError(f"Page {self.page.name!r} has no element {alias!r}") from None
        if isinstance(spec, Locator):
            return self.session.resolve(spec)
        return spec(self.session)

    def interact(self, alias: str, action: str, **args: Any) -> Any:
        return self.session.interact(self.element(alias), action, args)

    def click(self, alias: str) -> None:
        self.interact(alias, "click")

    def fill(self, alias: str, value: Any) -> None:
        self.interact(alias, "fill", value=value)

    def press(self, alias: str, key: str) -> None:
        self.interact(alias, "press", key=key)

    def select(self, alias: str, value: Any) -> None:
        self.interact(alias, "select", value=value)

    def text_of(self, alias: str) -> str:
        return self.interact(alias, "text")

    def value_of(self, alias: str) -> str:
        return self.interact(alias, "value")

    def is_visible(self, alias: str) -> bool:
        return self.interact(alias, "visible")

    def count_of(self, alias: str) -> int:
        return self.interact(alias, "count")

    def navigate(self, path: str | None = None) -> None:
        """Open ``path`` (default: the page's own path) relative to the base URL."""
        target = path if path is not None else (self.page.path or "/")
        self.session.navigate(join_url(self.base_url, target))

    def url(self) -> str:
        return self.session.current_url()


# -----------------------------------------------------------------------------
# Actions every page supports
# -----------------------------------------------------------------------------


def _navigate(ctx: PageContext, path: str | None = None) -> None:
    ctx.navigate(path)


def _click(ctx: PageContext, element: str) -> None:
    ctx.click(element)


def _fill(ctx: PageContext, element: str, value: Any) -> None:
    ctx.fill(element, value)


def _press(ctx: PageContext, element: str, key: str) -> None:
    ctx.press(element, key)


def _text(ctx: PageContext, element: str) -> str:
    return ctx.text_of(element)


BASE_ACTIONS: Mapping[str, Action] = MappingProxyType(
    {
        "navigate": _navigate,
        "click": _click,
        "fill": _fill,
        "press": _press,
        "text": _text,
    }
)


class PageDefinition:
    """Builder collecting locators and ``@action`` functions into a PageObject."""

    def __init__(
        self,
        name: str,
        *,
        path: str | None = None,
        locators: Mapping[str, LocatorSpec] | None = None,
    ):
        self.name = name
        self.path = path
        self.locators: dict[str, LocatorSpec] = dict(locators or {})
        self.actions: dict[str, Action] = {}

    def action(self, func: Action | None = None, *, name: str | None = None):
        """Register ``func`` as an action; usable bare or with ``name=``."""

        def decorator(fn: Action) -> Action:
            self.actions[name or fn.__name__] = fn
            return fn

        if func is not None:
            return decorator(func)
        return decorator

    def build(self) -> PageObject:
        return PageObject(self.name, self.locators, self.actions, self.path)


class PageRegistry:
    """Name -> PageObject lookup shared (read-only) by all workers."""

    def __init__(self):
        self._pages: dict[str, PageObject] = {}
        self._lock = threading.Lock()

    def register(self, name: str, definition: PageObject | PageDefinition) -> PageObject:
        """Store a page under ``name``; a later registration replaces an earlier one."""
        page = definition.build() if isinstance(definition, PageDefinition) else definition
        if page.name != name:
            page = PageObject(name, page.locators, page.actions, page.path)
        with self._lock:
            if name in self._pages:
                logger.warning("Page %s re-registered; replacing previous definition", name)
            self._pages[name] = page
        return page

    def get(self, name: str) -> PageObject:
        try:
            return self._pages[name]
        except KeyError:
            raise UnknownPageError(name) from None

    def names(self) -> list[str]:
        return sorted(self._pages)

    def __contains__(self, name: str) -> bool:
        return name in self._pages

    def perform(
        self,
        session: BrowserSession,
        page_name: str,
        action_name: str,
        args: Mapping[str, Any] | None = None,
        *,
        base_url: str = "",
    ) -> Any:
        """
        Run one action of one page against ``session``.

        Returns:
            Whatever the action returns (``None`` for pure interactions).

        Raises:
            UnknownPageError: No page called ``page_name``.
            UnknownActionError: The page has no such action.
            ActionFailure: The action (or the backend under it) raised.
        """
        page = self.get(page_name)
        action = page.find_action(action_name)
        if action is None:
            raise UnknownActionError(page_name, action_name)

        ctx = PageContext(page, session, base_url)
        logger.debug("Performing %s.%s", page_name, action_name)
        try:
            return action(ctx, **dict(args or {}))
        except Exception as exc:
            raise ActionFailure(page_name, action_name, exc) from exc

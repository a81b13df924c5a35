"""
Page Objects for the task manager example application.

Loaded as a harness plugin (``plugins: [examples.taskapp.pages]``): the
harness calls ``register_pages`` once at startup and the ``before_each``
hook before every spec.

Every page prefers ``data-testid`` locators; test ids are stable and exist
for testing, unlike CSS classes or visible copy.
"""

from __future__ import annotations

import logging
import uuid

from harness.pages import PageContext, PageDefinition, PageRegistry, by_test_id

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Login
# -----------------------------------------------------------------------------

login = PageDefinition(
    "login",
    path="/login",
    locators={
        "username": by_test_id("login-username-input"),
        "password": by_test_id("login-password-input"),
        "submit": by_test_id("login-submit"),
        "register_link": by_test_id("register-link"),
        "flash_error": by_test_id("flash-error"),
    },
)


@login.action
def sign_in(ctx: PageContext, username: str, password: str) -> None:
    """Fill credentials and submit the login form."""
    ctx.navigate()
    ctx.fill("username", username)
    ctx.fill("password", password)
    ctx.click("submit")


@login.action
def error_message(ctx: PageContext) -> str:
    return ctx.text_of("flash_error")


# -----------------------------------------------------------------------------
# Register
# -----------------------------------------------------------------------------

register = PageDefinition(
    "register",
    path="/register",
    locators={
        "username": by_test_id("register-username-input"),
        "email": by_test_id("register-email-input"),
        "password": by_test_id("register-password-input"),
        "submit": by_test_id("register-submit"),
        "login_link": by_test_id("login-link"),
    },
)


@register.action
def sign_up(ctx: PageContext, username: str, email: str, password: str) -> None:
    ctx.navigate()
    ctx.fill("username", username)
    ctx.fill("email", email)
    ctx.fill("password", password)
    ctx.click("submit")


# -----------------------------------------------------------------------------
# Task list
# -----------------------------------------------------------------------------

task_list = PageDefinition(
    "task_list",
    path="/",
    locators={
        "title": by_test_id("page-title"),
        "list": by_test_id("task-list"),
        "count": by_test_id("task-count"),
        "empty_state": by_test_id("empty-state"),
        "status_filter": by_test_id("status-filter"),
        "filter_button": by_test_id("filter-button"),
        "new_task": by_test_id("nav-new-task"),
        "logout": by_test_id("logout-button"),
    },
)


@task_list.action
def filter_by_status(ctx: PageContext, status: str) -> None:
    ctx.select("status_filter", status)
    ctx.click("filter_button")


@task_list.action
def task_count(ctx: PageContext) -> int:
    """Number shown in the task counter (0 when the list is empty)."""
    text = ctx.text_of("count").strip()
    digits = "".join(ch for ch in text if ch.isdigit())
    return int(digits) if digits else 0


@task_list.action
def sign_out(ctx: PageContext) -> None:
    ctx.click("logout")


# -----------------------------------------------------------------------------
# Task form
# -----------------------------------------------------------------------------

task_form = PageDefinition(
    "task_form",
    path="/tasks/new",
    locators={
        "heading": by_test_id("form-title"),
        "title": by_test_id("title-input"),
        "description": by_test_id("description-input"),
        "status": by_test_id("status-input"),
        "priority": by_test_id("priority-input"),
        "submit": by_test_id("submit-button"),
        "cancel": by_test_id("cancel-button"),
    },
)


@task_form.action
def create_task(
    ctx: PageContext,
    title: str,
    description: str = "",
    priority: str = "medium",
    status: str = "pending",
) -> None:
    ctx.navigate()
    ctx.fill("title", title)
    if description:
        ctx.fill("description", description)
    ctx.select("priority", priority)
    ctx.select("status", status)
    ctx.click("submit")


PAGES = (login, register, task_list, task_form)


def register_pages(registry: PageRegistry) -> None:
    for page in PAGES:
        registry.register(page.name, page)


def before_each(ctx) -> None:
    """Give every spec a unique user so parallel specs never collide."""
    suffix = uuid.uuid4().hex[:8]
    ctx.variables["user"] = {
        "username": f"e2e_{suffix}",
        "email": f"e2e_{suffix}@test.com",
        "password": "E2EPass123!",
    }
    logger.debug("[%s] generated user %s", ctx.spec.id, ctx.variables["user"]["username"])

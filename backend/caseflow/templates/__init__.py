"""
Email Templates Package

Templates for the emails and notifications fired by transition actions.
"""
from .transition_email import (
    build_transition_email,
    render_placeholders,
    get_base_template,
    get_info_card,
)

__all__ = [
    "build_transition_email",
    "render_placeholders",
    "get_base_template",
    "get_info_card",
]

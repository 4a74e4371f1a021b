"""
Transition Email Templates

Renders email and in-app notification text for transition actions.
Templates use {{placeholder}} syntax; unknown placeholders render empty.
"""
import html
import re
from typing import Any, Dict, Optional

from ..domain.models import EmailActionConfig

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")

# Legacy placeholder names accepted in stored templates
PLACEHOLDER_ALIASES = {
    "incident_number": "case_number",
}

DEFAULT_BODY_TEMPLATE = (
    "{{performed_by}} moved {{case_number}} from {{old_state}} to {{new_state}}."
)


def render_placeholders(template: str, values: Dict[str, Any], escape: bool = False) -> str:
    """Substitute {{name}} placeholders from values"""
    def replace(match: "re.Match[str]") -> str:
        name = PLACEHOLDER_ALIASES.get(match.group(1), match.group(1))
        value = values.get(name)
        if value is None:
            return ""
        text = str(value)
        return html.escape(text) if escape else text

    return PLACEHOLDER_PATTERN.sub(replace, template or "")


def get_base_template(content: str, action_button_text: Optional[str] = None,
                      action_button_url: Optional[str] = None, accent_color: str = "#3B82F6") -> str:
    """Table-based email shell (renders in Outlook, Gmail, Apple Mail)"""
    button_html = ""
    if action_button_text and action_button_url:
        button_html = f'''
        <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="margin: 32px 0;">
            <tr>
                <td align="center">
                    <a href="{action_button_url}"
                       style="display: inline-block; background-color: {accent_color}; color: #ffffff;
                              text-decoration: none; padding: 14px 32px; border-radius: 8px;
                              font-weight: 600; font-size: 14px; font-family: Arial, sans-serif;">
                        {action_button_text}
                    </a>
                </td>
            </tr>
        </table>
        '''

    return f'''<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="margin: 0; padding: 0; background-color: #F3F4F6;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%">
        <tr>
            <td align="center" style="padding: 32px 16px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600"
                       style="background-color: #ffffff; border-top: 4px solid {accent_color};">
                    <tr>
                        <td style="padding: 32px; font-family: Arial, sans-serif; font-size: 14px; color: #374151;">
                            {content}
                            {button_html}
                        </td>
                    </tr>
                    <tr>
                        <td style="padding: 16px 32px; background-color: #F9FAFB; font-size: 12px; color: #9CA3AF; font-family: Arial, sans-serif;">
                            This is an automated message from the case management console.
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>'''


def get_info_card(title: str, fields: Dict[str, Any]) -> str:
    """Two-column details card; empty values are left out"""
    rows = ""
    for label, value in fields.items():
        if value in (None, ""):
            continue
        rows += f'''
            <tr>
                <td style="padding: 8px 16px; color: #6B7280; font-size: 13px; border-bottom: 1px solid #E5E7EB; width: 140px;">{html.escape(label)}</td>
                <td style="padding: 8px 16px; color: #111827; font-size: 13px; font-weight: bold; border-bottom: 1px solid #E5E7EB;">{html.escape(str(value))}</td>
            </tr>'''

    return f'''
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%"
           style="margin: 24px 0; border: 1px solid #E5E7EB; background-color: #F9FAFB; font-family: Arial, sans-serif;">
        <tr>
            <td colspan="2" style="background-color: #EEF2FF; padding: 12px 16px; font-size: 11px; text-transform: uppercase; color: #6B7280; font-weight: bold;">
                {html.escape(title)}
            </td>
        </tr>{rows}
    </table>'''


def build_transition_email(config: EmailActionConfig, values: Dict[str, Any]) -> Dict[str, str]:
    """
    Render subject and HTML body for an email action

    Args:
        config: The action's email config
        values: Placeholder values for the case and transition

    Returns:
        {"subject": ..., "body": ...}
    """
    subject = render_placeholders(config.subject_template, values).strip()
    intro = render_placeholders(config.body_template or DEFAULT_BODY_TEMPLATE, values, escape=True)
    content = f'<p style="margin: 0 0 16px 0; line-height: 1.6;">{intro}</p>'

    if config.include_incident_details:
        content += get_info_card("Case details", {
            "Number": values.get("case_number"),
            "Title": values.get("title"),
            "Type": values.get("record_type"),
            "Priority": values.get("priority"),
            "Severity": values.get("severity"),
            "Source": values.get("source"),
        })

    if config.include_transition_info:
        content += get_info_card("Transition", {
            "Action": values.get("transition_name"),
            "From": values.get("old_state"),
            "To": values.get("new_state"),
            "By": values.get("performed_by"),
        })

    if config.include_comments and values.get("comment"):
        content += get_info_card("Comment", {"Comment": values.get("comment")})

    body = get_base_template(
        content,
        action_button_text="Open case" if values.get("case_url") else None,
        action_button_url=values.get("case_url"),
    )
    return {"subject": subject, "body": body}

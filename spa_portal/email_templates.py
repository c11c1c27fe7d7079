"""
MJML Email Templates
Operational emails sent to the spa's staff inbox
"""

from html import escape
from typing import Optional

# Golden Tower Spa palette - gold on warm neutrals
THEME = {
    "primary": "#b8860b",
    "primary_light": "#f7efd9",
    "background": "#faf8f4",
    "card_bg": "#ffffff",
    "text_primary": "#2b2b2b",
    "text_secondary": "#4a4a4a",
    "text_muted": "#7a7a7a",
    "border": "#e8e1d3",
    "danger": "#b91c1c",
    "warning": "#b45309",
}

SEVERITY_COLORS = {
    "error": THEME["danger"],
    "warning": THEME["warning"],
    "info": THEME["text_muted"],
}


def get_base_template(title: str, preview_text: str, content_sections: str) -> str:
    """Base MJML wrapper shared by every email"""
    return f"""
    <mjml>
      <mj-head>
        <mj-title>{escape(title)}</mj-title>
        <mj-preview>{escape(preview_text)}</mj-preview>
        <mj-attributes>
          <mj-all font-family="Helvetica, Arial, sans-serif" />
          <mj-text font-size="15px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="{THEME['card_bg']}" padding="32px 32px 8px 32px">
          <mj-column>
            <mj-text font-size="13px" color="{THEME['primary']}" text-transform="uppercase" letter-spacing="2px" font-weight="600" padding="0 0 8px 0">
              Golden Tower Spa
            </mj-text>
            <mj-text font-size="22px" font-weight="600" color="{THEME['text_primary']}" padding="0 0 16px 0">
              {escape(title)}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 16px 0" />
          </mj-column>
        </mj-section>
        {content_sections}
      </mj-body>
    </mjml>
    """


def _code_block(label: str, body: Optional[str]) -> str:
    return f"""
        <mj-section background-color="{THEME['card_bg']}" padding="0 32px 16px 32px">
          <mj-column>
            <mj-text font-weight="600" color="{THEME['text_primary']}" padding="0 0 6px 0">{label}</mj-text>
            <mj-text font-family="'Courier New', monospace" font-size="12px" container-background-color="#f4f4f4" padding="10px">
              <pre style="white-space: pre-wrap; margin: 0;">{escape(body or "Not provided")}</pre>
            </mj-text>
          </mj-column>
        </mj-section>
    """


def error_alert_template(
    message: str,
    severity: str = "error",
    url: Optional[str] = None,
    user_id: Optional[str] = None,
    stack: Optional[str] = None,
    component_stack: Optional[str] = None,
    dedup_minutes: int = 60,
) -> str:
    color = SEVERITY_COLORS.get(severity, THEME["danger"])
    content = f"""
        <mj-section background-color="{THEME['card_bg']}" padding="0 32px 16px 32px">
          <mj-column>
            <mj-text padding="0 0 4px 0"><strong>Message:</strong> {escape(message)}</mj-text>
            <mj-text padding="0 0 4px 0"><strong>URL:</strong> {escape(url or "Unknown")}</mj-text>
            <mj-text padding="0 0 4px 0"><strong>User:</strong> {escape(user_id or "Anonymous")}</mj-text>
            <mj-text padding="0"><strong>Severity:</strong> <span style="color: {color};">{escape(severity)}</span></mj-text>
          </mj-column>
        </mj-section>
        {_code_block("Stack Trace", stack)}
        {_code_block("Component Stack", component_stack)}
        <mj-section background-color="{THEME['card_bg']}" padding="0 32px 32px 32px">
          <mj-column>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 12px 0" />
            <mj-text font-size="11px" color="{THEME['text_muted']}" padding="0">
              This alert was sent because the error occurred for the first time in the last {dedup_minutes} minutes.
              Identical errors are still logged but will not send another email until then.
            </mj-text>
          </mj-column>
        </mj-section>
    """
    return get_base_template(
        title="System Error Reported",
        preview_text=message[:90],
        content_sections=content,
    )

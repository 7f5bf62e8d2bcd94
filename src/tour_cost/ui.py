from __future__ import annotations

from html import escape

from .core import ValidationResult


def render_validation_summary(validation: ValidationResult) -> str:
    if validation.ready_to_save:
        return (
            '<section class="validation-summary success">'
            "<h2>Validation Summary</h2>"
            "<p>All required tour fields are filled in ✅</p>"
            "</section>"
        )

    count = len(validation.blockers)
    noun = "problem" if count == 1 else "problems"
    items = "".join(f"<li>{escape(blocker)}</li>" for blocker in validation.blockers)
    return (
        '<section class="validation-summary error">'
        f"<h2>Validation Summary: {count} {noun}</h2>"
        "<p>The tour cannot be saved until these are fixed.</p>"
        f"<ul>{items}</ul>"
        "</section>"
    )

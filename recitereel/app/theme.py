"""Dark theme QSS stylesheet — black and gold to match the reel."""

DARK_THEME = """
/* ── Global ─────────────────────────────────────────── */
QWidget {
    background-color: #0c0c0f;
    color: #e7e5e4;
    font-family: "Inter", "Segoe UI", sans-serif;
    font-size: 13px;
    border: none;
}
QWidget:focus { outline: none; }

/* ── Preview ────────────────────────────────────────── */
#PreviewWidget {
    background-color: #000000;
}

/* ── Control bar buttons ────────────────────────────── */
#ControlBar {
    background-color: #131316;
    min-height: 56px;
    max-height: 56px;
}
QPushButton#CtrlBtn {
    height: 34px;
    padding: 0 18px;
    border-radius: 6px;
    border: 1px solid #3f3f46;
    background-color: #1c1c21;
    color: #e7e5e4;
    font-weight: 500;
}
QPushButton#CtrlBtn:hover {
    background-color: #27272a;
    border-color: #52525b;
}
QPushButton#CtrlBtn:disabled {
    color: #52525b;
    border-color: #27272a;
}
QPushButton#PlayBtn {
    height: 38px;
    padding: 0 28px;
    border-radius: 8px;
    background-color: #eab308;
    color: #0c0c0f;
    font-weight: 700;
}
QPushButton#PlayBtn:hover {
    background-color: #facc15;
}
QPushButton#RecordBtn {
    height: 38px;
    padding: 0 28px;
    border-radius: 8px;
    background-color: #dc2626;
    border: 2px solid #f87171;
    color: white;
    font-weight: 700;
}
QPushButton#RecordBtn:hover {
    background-color: #ef4444;
    border-color: #fca5a5;
}
QPushButton#PlayBtn:disabled, QPushButton#RecordBtn:disabled {
    background-color: #27272a;
    border-color: #27272a;
    color: #52525b;
}

/* ── Status bar ─────────────────────────────────────── */
#StatusBar {
    background-color: #131316;
    border-top: 1px solid #27272a;
    min-height: 28px;
    max-height: 28px;
}
#StatusLabel {
    color: #a1a1aa;
    font-size: 12px;
    background: transparent;
}
#StatusLabel[level="warning"] { color: #eab308; }
#StatusLabel[level="error"] { color: #f87171; }
#StatusLabel[level="success"] { color: #4ade80; }
#ProgressLabel {
    color: #eab308;
    font-size: 12px;
    background: transparent;
}
"""

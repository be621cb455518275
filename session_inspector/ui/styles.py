"""CSS styles for the session inspector TUI."""

APP_CSS = """
#filter-bar {
    height: 1;
    padding: 0 1;
    background: $surface;
}

#search-input {
    display: none;
    height: 3;
    border: solid $warning;
    padding: 0 1;
}

#search-input.visible {
    display: block;
}

#panes {
    height: 1fr;
}

#main-container {
    width: 100%;
    height: 100%;
    border: solid $primary;
}

#sub-container {
    height: 100%;
    border: solid $warning;
    display: none;
}

#detail-container {
    height: 100%;
    border: solid $secondary;
    padding: 0 1;
    display: none;
}

#main-list, #edits-list, #sub-list {
    height: 1fr;
}

#edits-list {
    display: none;
}

.list-header {
    height: auto;
    background: $surface;
    padding: 0 1;
    text-style: bold;
}

#main-header {
    color: $primary;
}

#sub-header {
    color: $warning;
}

#detail-panel {
    height: 100%;
    overflow-y: auto;
    scrollbar-gutter: stable;
}

#detail-panel:focus {
    border: solid $success;
}

EventItem, FileEditItem {
    height: 1;
    padding: 0 1;
}

EventItem:hover, FileEditItem:hover {
    background: $surface-lighten-1;
}

EventItem.match {
    background: $warning 30%;
}

EventItem.flash {
    background: $success 40%;
}

ListView:focus > ListItem.-active {
    background: $primary-darken-1;
}

ListView.-has-focus > ListItem.-active {
    background: $primary;
}

Footer {
    background: $surface;
}
"""

"""
Inbox package: item capture, status state machine, filing, queues and sweeps.

Modules are imported directly (``inbox_triage.inbox.service`` etc.); this
package module stays empty so the classification layer can depend on
``inbox.status`` without pulling in the services that depend on it.
"""

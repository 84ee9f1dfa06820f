# consentlink/models/__init__.py
from consentlink.models.connection import Connection, ConnectionStatus
from consentlink.models.connection_message import ConnectionMessage
from consentlink.models.consent_grant import ConsentGrant, GrantStatus
from consentlink.models.share_token import ShareToken, ShareStatus
from consentlink.models.sharing_audit import AuditEventType, SharingAuditLog

"""
Centralized configuration — env vars, sync constants, Graph field list.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis / RQ ────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
SYNC_QUEUE_NAME = os.getenv('SYNC_QUEUE_NAME', 'greenbook-sync')
SYNC_JOB_TIMEOUT = int(os.getenv('SYNC_JOB_TIMEOUT', '14400'))

# ── Database ──────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///greenbook.db')

# ── Microsoft Graph ───────────────────────────────────────────────────────────
MICROSOFT_TENANT_ID = os.getenv('MICROSOFT_TENANT_ID')
MICROSOFT_CLIENT_ID = os.getenv('MICROSOFT_CLIENT_ID')
MICROSOFT_CLIENT_SECRET = os.getenv('MICROSOFT_CLIENT_SECRET')
GRAPH_API_URL = os.getenv('GRAPH_API_URL', 'https://graph.microsoft.com/v1.0')
GRAPH_SCOPES = ['https://graph.microsoft.com/.default']
GRAPH_USER_FILTER = os.getenv('GRAPH_USER_FILTER', "accountEnabled eq true and userType eq 'Member'")
GRAPH_PAGE_SIZE = int(os.getenv('GRAPH_PAGE_SIZE', '100'))
GRAPH_REQUEST_TIMEOUT = int(os.getenv('GRAPH_REQUEST_TIMEOUT', '30'))

GRAPH_USER_FIELDS = [
    'id',
    'displayName',
    'givenName',
    'surname',
    'userPrincipalName',
    'mail',
    'jobTitle',
    'department',
    'officeLocation',
    'mobilePhone',
    'businessPhones',
    'preferredLanguage',
    'employeeId',
    'employeeType',
    'employeeHireDate',
    'usageLocation',
    'accountEnabled',
    'createdDateTime',
    'lastPasswordChangeDateTime',
]

# Manager / direct-report lookups only need the identity fields
GRAPH_RELATION_FIELDS = [
    'id',
    'displayName',
    'userPrincipalName',
    'mail',
    'jobTitle',
    'department',
    'officeLocation',
    'accountEnabled',
]

# ── Scheduler ─────────────────────────────────────────────────────────────────
SCHEDULER_ENABLED = os.getenv('SCHEDULER_ENABLED', '').lower() in ('1', 'true', 'yes')
SCHEDULER_TIMEZONE = 'UTC'

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Sync phase definitions ────────────────────────────────────────────────────
# Fixed execution order
SYNC_PHASES = [
    'users',
    'reference_data',
    'link_references',
    'hierarchy',
]

TOP_LEVEL_KINDS = [
    'full_sync',
    'selective_sync',
    'incremental_sync',
]

SYNC_KINDS = SYNC_PHASES + TOP_LEVEL_KINDS

# ── Run status values ─────────────────────────────────────────────────────────
SYNC_STATUSES = [
    'running',
    'success',
    'partial',
    'error',
    'cancelled',
]

TERMINAL_STATUSES = [s for s in SYNC_STATUSES if s != 'running']

# ── Schedules ─────────────────────────────────────────────────────────────────
SCHEDULE_TYPES = ['incremental', 'full', 'selective']

# ── Hierarchy ─────────────────────────────────────────────────────────────────
# Upper bound on manager-chain walks; externally sourced data may contain cycles
MANAGER_CHAIN_MAX_DEPTH = 10

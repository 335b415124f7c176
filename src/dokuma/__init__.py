"""dokuma - entity CRUD and query-cache data flow for the textile ERP client."""

# Application context
from dokuma.app import AppContext, current, init, scope

# Confirmation
from dokuma.dialogs import ConfirmDialog

# Duration parsing
from dokuma.duration import parse_duration

# Errors
from dokuma.errors import DokumaError, HttpError, NetworkError, ValidationError

# Forms
from dokuma.forms import FormController

# Remote resource client
from dokuma.http import ResourceClient, default_fetcher, json_body

# Keys
from dokuma.keys import is_key_prefix, make_key

# Mutations
from dokuma.mutations import Mutation

# Notifications
from dokuma.notify import LogNotifier, Navigator, Notifier, Toaster

# Query cache
from dokuma.query_cache import QueryCache, QueryObserver

# Resource catalog
from dokuma.resources import CATALOG, Resource

# Core types
from dokuma.types import (
    CacheEntry,
    Duration,
    Message,
    MutationDescriptor,
    MutationResult,
    ResourceKey,
)

# Views
from dokuma.views import EntityActions, ListView, LookupSpec, ViewState, filter_rows

__version__ = "0.1.0"

__all__ = [
    "CATALOG",
    "AppContext",
    "CacheEntry",
    "ConfirmDialog",
    "DokumaError",
    "Duration",
    "EntityActions",
    "FormController",
    "HttpError",
    "ListView",
    "LogNotifier",
    "LookupSpec",
    "Message",
    "Mutation",
    "MutationDescriptor",
    "MutationResult",
    "Navigator",
    "NetworkError",
    "Notifier",
    "QueryCache",
    "QueryObserver",
    "Resource",
    "ResourceClient",
    "ResourceKey",
    "Toaster",
    "ValidationError",
    "ViewState",
    "current",
    "default_fetcher",
    "filter_rows",
    "init",
    "is_key_prefix",
    "json_body",
    "make_key",
    "parse_duration",
    "scope",
]

# Infrastructure clients
from clients.file_store import JsonFileStore
from clients.valkey_store import ValkeyStore
from clients.invoice_api_client import InvoiceApiClient

"""Endpoint groups of the aPaaS OpenAPI."""

from apaas_client.api.attachments import AttachmentApi, AvatarApi, FileApi
from apaas_client.api.base import ApiContext, ApiGroup
from apaas_client.api.directory import DepartmentApi, UserApi
from apaas_client.api.functions import AutomationApi, AutomationV1Api, AutomationV2Api, FunctionApi
from apaas_client.api.globals import GlobalApi, GlobalOptionsApi, GlobalVariablesApi
from apaas_client.api.objects import (
    ObjectApi,
    ObjectMetadataApi,
    RecordCreateApi,
    RecordDeleteApi,
    RecordSearchApi,
    RecordUpdateApi,
)
from apaas_client.api.pages import PageApi

__all__ = [
    "ApiContext",
    "ApiGroup",
    "AttachmentApi",
    "AutomationApi",
    "AutomationV1Api",
    "AutomationV2Api",
    "AvatarApi",
    "DepartmentApi",
    "FileApi",
    "FunctionApi",
    "GlobalApi",
    "GlobalOptionsApi",
    "GlobalVariablesApi",
    "ObjectApi",
    "ObjectMetadataApi",
    "PageApi",
    "RecordCreateApi",
    "RecordDeleteApi",
    "RecordSearchApi",
    "RecordUpdateApi",
    "UserApi",
]

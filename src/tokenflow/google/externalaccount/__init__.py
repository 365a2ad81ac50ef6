"""Workload and workforce identity federation for Google Cloud.

An external account credential exchanges a token from another identity
provider (a file, a metadata URL, AWS, an executable or an application
callback) for a Google access token at the Security Token Service, and can
then impersonate a service account.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from ._config import (
    CredentialSource,
    ExecutableConfig,
    ExternalAccountConfig,
    ServiceAccountImpersonation,
    STSTokenSource,
    token_source_from_info,
)
from ._impersonate import ImpersonateTokenSource
from ._sources import (
    CredentialFormat,
    FileCredentialSource,
    ProgrammaticCredentialSource,
    SubjectTokenSource,
    SubjectTokenSupplier,
    URLCredentialSource,
)
from .aws import AwsCredentialSource, AwsRequest, AwsRequestSigner, AwsSecurityCredentials
from .executable import CommandRunner, ExecutableCredentialSource

__all__ = [
    "AwsCredentialSource",
    "AwsRequest",
    "AwsRequestSigner",
    "AwsSecurityCredentials",
    "CommandRunner",
    "CredentialFormat",
    "CredentialSource",
    "ExecutableConfig",
    "ExecutableCredentialSource",
    "ExternalAccountConfig",
    "FileCredentialSource",
    "ImpersonateTokenSource",
    "ProgrammaticCredentialSource",
    "STSTokenSource",
    "ServiceAccountImpersonation",
    "SubjectTokenSource",
    "SubjectTokenSupplier",
    "URLCredentialSource",
    "token_source_from_info",
]

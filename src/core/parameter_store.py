"""
AWS Systems Manager Parameter Store helper.
Secrets such as the JWT signing key are read once per process and cached.
"""
import logging
from functools import lru_cache
import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class ParameterNotAvailable(Exception):
    """Raised when a parameter cannot be read from Parameter Store."""

    def __init__(self, parameter_name: str, reason: str):
        self.parameter_name = parameter_name
        self.message = f"Parameter '{parameter_name}' unavailable: {reason}"
        super().__init__(self.message)


@lru_cache(maxsize=10)
def get_parameter(parameter_name: str, region: str = "us-east-1") -> str:
    """
    Fetch a SecureString parameter, decrypted.

    Successful reads are cached; failures are not, so a later call retries.

    Raises:
        ParameterNotAvailable: If the parameter is missing or SSM is unreachable
    """
    ssm = boto3.client('ssm', region_name=region)
    try:
        response = ssm.get_parameter(Name=parameter_name, WithDecryption=True)
    except ClientError as e:
        raise ParameterNotAvailable(parameter_name, e.response['Error']['Code']) from e
    except BotoCoreError as e:
        raise ParameterNotAvailable(parameter_name, str(e)) from e

    logger.info("Loaded parameter %s", parameter_name)
    return response['Parameter']['Value']

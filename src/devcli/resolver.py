"""Map forward rules to running pods through kubectl."""

from .common.cancellation import CancellationToken
from .common.exceptions import PodNotFoundError
from .common.logging import get_logger
from .common.tools import run_tool
from .common.utils import first_word
from .models import ForwardRule

logger = get_logger(__name__)

RUNNING_PODS_JSONPATH = "jsonpath={.items[?(@.status.phase=='Running')].metadata.name}"


class PodResolver:
    """Finds the pod a forward rule should be connected to.

    When several running pods match, the first name in kubectl's output is
    used. kubectl does not promise a stable order, so two sessions may pick
    different replicas.
    """

    def __init__(self, kubectl_binary: str = "kubectl"):
        self.kubectl_binary = kubectl_binary

    def build_query(self, rule: ForwardRule) -> list[str]:
        return [
            self.kubectl_binary,
            "get",
            "pods",
            "-n",
            rule.namespace,
            "-l",
            f"app={rule.app_label}",
            "-o",
            RUNNING_PODS_JSONPATH,
        ]

    async def resolve(self, token: CancellationToken, rule: ForwardRule) -> str:
        """Return the name of the first running pod matching ``rule``.

        Raises:
            PodNotFoundError: If no running pod matches
            ToolError: If the query fails, kubectl is missing, or the token fires
        """
        logger.info("Looking up running pod", app=rule.app_label, namespace=rule.namespace)
        output = await run_tool(self.build_query(rule), token)

        pod_name = first_word(output)
        if not pod_name:
            raise PodNotFoundError(rule.namespace, rule.app_label)

        logger.info(
            "Found running pod",
            app=rule.app_label,
            namespace=rule.namespace,
            pod=pod_name,
        )
        return pod_name

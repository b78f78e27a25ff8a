"""Jenkins CI provider."""

import logging
from typing import Any
from urllib.parse import quote
from xml.sax.saxutils import escape

import aiohttp

from tssc.e2e_orchestrator.config import Timeouts
from tssc.e2e_orchestrator.errors import ConflictError, NotFoundError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.enums import CIType, EventType, GitType, PipelineStatus
from tssc.e2e_orchestrator.models.pipeline import Pipeline
from tssc.e2e_orchestrator.models.provider_config import JenkinsConfig
from tssc.e2e_orchestrator.models.pull_request import PullRequest
from tssc.e2e_orchestrator.modification.jenkinsfile import JENKINSFILE_PATH
from tssc.e2e_orchestrator.providers.ci.base import CIProvider, JobInfo, assemble_job_logs

logger = logging.getLogger(__name__)

XML_HEADERS = {"Content-Type": "application/xml"}
DEFAULT_CREDENTIAL_ID = "GITOPS_AUTH_PASSWORD"
BUILDS_TREE = (
    "builds[number,result,building,url,timestamp,duration,"
    "actions[_class,lastBuiltRevision[SHA1],buildsByBranchName[*[*]],"
    "parameters[name,value],causes[_class,shortDescription]]]"
)

_RESULTS = {
    "SUCCESS": PipelineStatus.SUCCESS,
    "FAILURE": PipelineStatus.FAILURE,
    "UNSTABLE": PipelineStatus.FAILURE,
    "ABORTED": PipelineStatus.CANCELLED,
    "NOT_BUILT": PipelineStatus.PENDING,
}
_SHA_PARAMETERS = ("GIT_COMMIT", "ghprbActualCommit")

FOLDER_XML = """<?xml version='1.1' encoding='UTF-8'?>
<com.cloudbees.hudson.plugins.folder.Folder>
  <description>{description}</description>
  <properties/>
  <folderViews/>
  <healthMetrics/>
</com.cloudbees.hudson.plugins.folder.Folder>"""

JOB_XML = """<flow-definition plugin="workflow-job">
  <actions/>
  <description></description>
  <keepDependencies>false</keepDependencies>
  <properties/>
  <definition class="org.jenkinsci.plugins.workflow.cps.CpsScmFlowDefinition" plugin="workflow-cps">
    <scm class="hudson.plugins.git.GitSCM" plugin="git">
      <configVersion>2</configVersion>
      <userRemoteConfigs>
        <hudson.plugins.git.UserRemoteConfig>
          <url>{repo_url}</url>
          <credentialsId>{credential_id}</credentialsId>
        </hudson.plugins.git.UserRemoteConfig>
      </userRemoteConfigs>
      <branches>
        <hudson.plugins.git.BranchSpec>
          <name>*/{branch}</name>
        </hudson.plugins.git.BranchSpec>
      </branches>
      <doGenerateSubmoduleConfigurations>false</doGenerateSubmoduleConfigurations>
      <submoduleCfg class="list"/>
      <extensions/>
    </scm>
    <scriptPath>{script_path}</scriptPath>
    <lightweight>true</lightweight>
  </definition>
  <triggers/>
  <disabled>false</disabled>
</flow-definition>"""

SECRET_TEXT_XML = """<org.jenkinsci.plugins.plaincredentials.impl.StringCredentialsImpl>
  <scope>GLOBAL</scope>
  <id>{id}</id>
  <description>{id}</description>
  <secret>{secret}</secret>
</org.jenkinsci.plugins.plaincredentials.impl.StringCredentialsImpl>"""

USERNAME_PASSWORD_XML = """<com.cloudbees.plugins.credentials.impl.UsernamePasswordCredentialsImpl>
  <scope>GLOBAL</scope>
  <id>{id}</id>
  <description>{id}</description>
  <username>{username}</username>
  <password>{password}</password>
</com.cloudbees.plugins.credentials.impl.UsernamePasswordCredentialsImpl>"""


def jenkins_http_client(config: JenkinsConfig) -> HttpClient:
    """Build a client authenticating with a user API token."""
    return HttpClient(
        config.url, "jenkins", auth=aiohttp.BasicAuth(config.username, config.token)
    )


def jenkins_build_status(build: dict[str, Any]) -> PipelineStatus:
    """Map a build's ``building`` flag and result to a status."""
    if build.get("building"):
        return PipelineStatus.RUNNING
    result = build.get("result")
    if result is None:
        return PipelineStatus.PENDING
    return _RESULTS.get(str(result), PipelineStatus.UNKNOWN)


def build_commit_sha(build: dict[str, Any]) -> str | None:
    """Return the commit a build ran for, from its git actions or parameters."""
    for action in build.get("actions") or []:
        if not isinstance(action, dict):
            continue
        revision = action.get("lastBuiltRevision") or {}
        if revision.get("SHA1"):
            return str(revision["SHA1"]).lower()
        for branch in (action.get("buildsByBranchName") or {}).values():
            sha = (branch.get("revision") or {}).get("SHA1")
            if sha:
                return str(sha).lower()
        for parameter in action.get("parameters") or []:
            if parameter.get("name") in _SHA_PARAMETERS and parameter.get("value"):
                return str(parameter["value"]).lower()
    return None


def build_event_type(build: dict[str, Any]) -> str:
    """Return ``build`` for manually started builds, ``push`` otherwise."""
    for action in build.get("actions") or []:
        for cause in (action or {}).get("causes") or []:
            if "UserIdCause" in cause.get("_class", ""):
                return EventType.BUILD.value
    return EventType.PUSH.value


class JenkinsCI(CIProvider):
    """Pipeline jobs in a folder named after the component."""

    ci_type = CIType.JENKINS
    builds_on_push = False

    def __init__(
        self,
        component_name: str,
        config: JenkinsConfig,
        git_type: GitType = GitType.GITHUB,
        http: HttpClient | None = None,
        timeouts: Timeouts | None = None,
    ) -> None:
        """Initialize provider for the Jenkins at ``config.url``."""
        super().__init__(component_name, timeouts)
        self.config = config
        self.git_type = git_type
        self.http = http or jenkins_http_client(config)

    @property
    def folder_name(self) -> str:
        """Folder holding the component jobs."""
        return self.component_name

    def _job_path(self, job_name: str, folder: str | None = None) -> str:
        folder = folder or self.folder_name
        return f"job/{quote(folder, safe='')}/job/{quote(job_name, safe='')}"

    async def _exists(self, path: str) -> bool:
        try:
            await self.http.get_json(f"{path}/api/json")
        except NotFoundError:
            return False
        return True

    async def create_folder(self, folder_name: str | None = None) -> None:
        """Create the component folder unless it exists."""
        folder = folder_name or self.folder_name
        if await self._exists(f"job/{quote(folder, safe='')}"):
            logger.info(f"Jenkins folder {folder} already exists")
            return
        await self.http.request(
            "POST",
            "createItem",
            params={"name": folder},
            data=FOLDER_XML.format(description=escape(f"Folder for {folder}")),
            headers=XML_HEADERS,
        )
        logger.info(f"Created Jenkins folder {folder}")

    async def create_job(
        self,
        job_name: str,
        repo_url: str,
        credential_id: str = DEFAULT_CREDENTIAL_ID,
        branch: str = "main",
        script_path: str = JENKINSFILE_PATH,
    ) -> None:
        """Create a pipeline job in the component folder unless it exists."""
        if await self._exists(self._job_path(job_name)):
            logger.info(f"Jenkins job {self.folder_name}/{job_name} already exists")
            return
        config_xml = JOB_XML.format(
            repo_url=escape(repo_url),
            credential_id=escape(credential_id),
            branch=escape(branch),
            script_path=escape(script_path),
        )
        await self.http.request(
            "POST",
            f"job/{quote(self.folder_name, safe='')}/createItem",
            params={"name": job_name},
            data=config_xml,
            headers=XML_HEADERS,
        )
        logger.info(f"Created Jenkins job {self.folder_name}/{job_name} for {repo_url}")

    async def _store_credential(self, credential_id: str, credential_xml: str) -> None:
        store = (
            f"job/{quote(self.folder_name, safe='')}/credentials/store/folder/domain/_"
        )
        try:
            await self.http.request(
                "POST",
                f"{store}/createCredentials",
                data=credential_xml,
                headers=XML_HEADERS,
            )
        except ConflictError:
            await self.http.request(
                "POST",
                f"{store}/credential/{quote(credential_id, safe='')}/config.xml",
                data=credential_xml,
                headers=XML_HEADERS,
            )
            logger.info(f"Updated Jenkins credential {credential_id}")
            return
        logger.info(f"Created Jenkins credential {credential_id}")

    async def add_secret_text(self, credential_id: str, secret: str) -> None:
        """Create or update a secret text credential in the component folder."""
        await self._store_credential(
            credential_id,
            SECRET_TEXT_XML.format(id=escape(credential_id), secret=escape(secret)),
        )

    async def add_username_password(
        self, credential_id: str, username: str, password: str
    ) -> None:
        """Create or update a username/password credential in the component folder."""
        await self._store_credential(
            credential_id,
            USERNAME_PASSWORD_XML.format(
                id=escape(credential_id),
                username=escape(username),
                password=escape(password),
            ),
        )

    async def trigger_build(self, job_name: str | None = None) -> None:
        """Queue a build of a job, the source job by default."""
        job = job_name or self.source_repo_name
        await self.http.request("POST", f"{self._job_path(job)}/build")
        logger.info(f"Triggered Jenkins build of {self.folder_name}/{job}")

    async def _builds(self, job_name: str) -> list[dict[str, Any]]:
        try:
            data = await self.http.get_json(
                f"{self._job_path(job_name)}/api/json", params={"tree": BUILDS_TREE}
            )
        except NotFoundError:
            return []
        builds = data.get("builds", []) if isinstance(data, dict) else []
        return builds if isinstance(builds, list) else []

    def _to_pipeline(self, build: dict[str, Any], job_name: str) -> Pipeline:
        pipeline = Pipeline.for_jenkins(
            job_name=job_name,
            build_number=int(build["number"]),
            repository_name=job_name,
            status=jenkins_build_status(build),
            sha=build_commit_sha(build),
            url=build.get("url"),
        )
        pipeline.event_type = build_event_type(build)
        return pipeline

    async def get_pipeline(
        self,
        pull_request: PullRequest,
        desired_status: PipelineStatus = PipelineStatus.RUNNING,
        event_type: EventType | None = None,
    ) -> Pipeline | None:
        """Return the newest build of the repository's job for the commit.

        Builds without a commit SHA are skipped.
        """
        sha = pull_request.sha.lower()
        for build in await self._builds(pull_request.repository):
            pipeline = self._to_pipeline(build, pull_request.repository)
            if pipeline.sha is None:
                continue
            if pipeline.sha != sha:
                continue
            if pipeline.status.reaches(desired_status):
                logger.info(f"Found Jenkins build {pipeline.display_name}")
                return pipeline
        logger.info(f"No Jenkins build yet for {pull_request.repository}@{sha[:7]}")
        return None

    async def check_pipeline_status(self, pipeline: Pipeline) -> PipelineStatus:
        """Return the status of a build."""
        build = await self.http.get_json(
            f"{self._job_path(pipeline.job_name or pipeline.repository_name)}"
            f"/{pipeline.build_number}/api/json"
        )
        if not isinstance(build, dict):
            return PipelineStatus.UNKNOWN
        return jenkins_build_status(build)

    async def list_pipelines(self) -> list[Pipeline]:
        """Return builds of both component jobs."""
        pipelines: list[Pipeline] = []
        for job in (self.source_repo_name, self.gitops_repo_name):
            pipelines.extend(self._to_pipeline(build, job) for build in await self._builds(job))
        return pipelines

    async def get_pipeline_logs(self, pipeline: Pipeline) -> str:
        """Return the console output of a build."""
        job_name = pipeline.job_name or pipeline.repository_name
        job = JobInfo(id=str(pipeline.build_number), name=job_name)

        async def _fetch(job: JobInfo) -> str:
            return await self.http.get_text(f"{self._job_path(job_name)}/{job.id}/consoleText")

        return await assemble_job_logs([job], _fetch)

    async def cancel_pipeline(self, pipeline: Pipeline) -> None:
        """Abort a running build."""
        job_name = pipeline.job_name or pipeline.repository_name
        await self.http.request("POST", f"{self._job_path(job_name)}/{pipeline.build_number}/stop")

    async def get_webhook_url(self) -> str:
        """Return the Jenkins endpoint receiving events from the git host."""
        base = self.config.url.rstrip("/")
        if self.git_type == GitType.GITLAB:
            return f"{base}/project/{self.folder_name}/{self.source_repo_name}"
        if self.git_type == GitType.BITBUCKET:
            return f"{base}/bitbucket-hook/"
        return f"{base}/github-webhook/"

    def get_ci_file_path_in_repo(self) -> str:
        """Return the Jenkinsfile path."""
        return JENKINSFILE_PATH

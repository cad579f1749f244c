"""The launcher facade, orchestrating all components behind the exposed operations.
Every operation returns a `Result` and never raises for expected failures.
"""

from threading import Lock
import logging
import time

from .standard import Context, VersionManifest
from .auth import CredentialManager, Credential, IdentityPrompt, AuthError
from .resolve import Resolver, VersionProfile, VersionNotFoundError, TooMuchParentsError, \
    JarNotFoundError, LibraryNotFoundError
from .fetch import Fetcher, FetchReport, FetchError, ResourceMissingError, VerificationFailedError
from .natives import extract_natives
from .launch import ArgumentBuilder, LaunchOptions
from .jvm import JvmInfo, JvmNotFoundError, JvmDownloadError, JvmLoadedEvent, MojangJvmProvider, \
    find_jvm, required_java_version, required_java_component
from .process import ProcessSupervisor, ProcessStartFailure, ClientAlreadyRunningError
from .download import Downloader
from .fabric import LoaderSpec
from .events import EventChannel, publish
from .http import HttpError, RetryPolicy
from .util import Result

from typing import Optional, Callable, List


logger = logging.getLogger(__name__)


# Provisioning is attempted again as a whole when files required to launch failed.
PROVISION_ATTEMPTS = 2
PROVISION_RETRY_DELAY = 3.0


class Launcher:
    """Entry point for front ends, all components are constructed here unless given.
    """

    def __init__(self, context: Context, credentials: CredentialManager, *,
        manifest: Optional[VersionManifest] = None,
        downloader: Optional[Downloader] = None,
        events: Optional[EventChannel] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        retry: Optional[RetryPolicy] = None,
        provision_attempts: int = PROVISION_ATTEMPTS,
        provision_delay: float = PROVISION_RETRY_DELAY,
        jvm_finder: Callable[..., JvmInfo] = find_jvm,
        jvm_provider: Optional[Callable[[str, int], JvmInfo]] = None,
        sleep: Callable[[float], None] = time.sleep
    ) -> None:
        self.context = context
        self.credentials = credentials
        self.events = events
        self.resolver = Resolver(context, manifest, retry=retry, events=events)
        self.fetcher = Fetcher(context, downloader, retry=retry, events=events)
        self.builder = ArgumentBuilder(context)
        self.supervisor = supervisor or ProcessSupervisor(events)
        self.provision_attempts = provision_attempts
        self.provision_delay = provision_delay
        self.jvm_finder = jvm_finder
        self.jvm_provider = jvm_provider or MojangJvmProvider(context, self.fetcher.downloader, retry=retry, events=events).provide
        self.sleep = sleep
        self._launch_lock = Lock()

    def authenticate(self, prompt: IdentityPrompt) -> Result:
        """Authenticate interactively and persist the new credential.
        """

        try:
            credential = self.credentials.authenticate(prompt)
        except AuthError as error:
            logger.error("authentication failed: %s", error)
            return Result.failure(str(error), requires_auth=True)
        except HttpError as error:
            logger.error("authentication failed: %s", error)
            return Result.failure(str(error), requires_auth=True)

        persisted = self._persist()
        return Result.ok(username=credential.username, uuid=credential.uuid, persisted=persisted)

    def ensure_valid(self, force_refresh: bool = False) -> Result:
        """Ensure that a valid credential is available, loading it from its file if not
        yet loaded. A refreshed credential is persisted again.
        """

        if self.credentials.credential is None:
            loaded = self.credentials.load()
            if not loaded.success:
                return Result.failure(loaded.error or "not authenticated", requires_auth=True)

        result = self.credentials.ensure_valid(force_refresh)
        if result.success and result.refreshed:
            self._persist()

        return result

    def provision(self, version: str, loader: Optional[LoaderSpec] = None) -> Result:
        """Resolve the version and fetch all of its files. Files that failed are given
        in the report of the successful result, unless the JAR or a library failed: the
        whole provisioning is then attempted again.
        """

        error = "provisioning not attempted"
        report = None

        for attempt in range(1, self.provision_attempts + 1):

            try:
                profile = self.resolver.resolve(version, loader)
                report = self.fetcher.fetch_all(profile)
            except (VersionNotFoundError, TooMuchParentsError, JarNotFoundError) as e:
                logger.error("failed to resolve %s: %s", version, e)
                return Result.failure(str(e))
            except ValueError as e:
                logger.error("invalid metadata for %s: %s", version, e)
                return Result.failure(f"invalid metadata: {e}")
            except HttpError as e:
                error = str(e)
            except OSError as e:
                logger.error("failed to install %s: %s", version, e)
                return Result.failure(f"failed to install: {e}")
            else:
                required_errors = _required_errors(profile, report)
                if not len(required_errors):
                    if not report.success:
                        logger.warning("%d file(s) of %s failed to download, continuing", len(report.errors), profile.id)
                    return Result.ok(profile=profile, report=report, version=profile.id)
                error = f"{len(required_errors)} required file(s) failed to download"

            if attempt < self.provision_attempts:
                logger.warning("provisioning of %s failed (attempt %d/%d): %s", version, attempt, self.provision_attempts, error)
                self.sleep(self.provision_delay)

        logger.error("provisioning of %s failed: %s", version, error)
        return Result.failure(error, report=report)

    def launch(self, options: LaunchOptions) -> Result:
        """Provision the version, ensure a valid credential, then start the game. Assets
        and natives that failed are given in the successful result, `report` and
        `natives`, the game may still run without them.
        """

        with self._launch_lock:

            if self.supervisor.status() is not None:
                return Result.failure("the game is already running")

            provisioned = self.provision(options.version, options.loader)
            if not provisioned.success:
                return provisioned

            profile = provisioned.profile

            if options.offline:
                credential = Credential.offline(options.offline_username)
            else:
                valid = self.ensure_valid(options.force_refresh)
                if not valid.success:
                    return valid
                credential = self.credentials.credential
                if credential is None:
                    return Result.failure("not authenticated", requires_auth=True)

            try:
                self.fetcher.verify(profile)
            except (ResourceMissingError, VerificationFailedError, LibraryNotFoundError) as e:
                logger.error("verification of %s failed: %s", profile.id, e)
                return Result.failure(str(e))

            natives_dir = self.context.natives_dir(profile.id)
            try:
                natives = extract_natives(profile, natives_dir)
                jvm = self._resolve_jvm(profile, options)
                plan = self.builder.build(profile, credential, options, natives_dir, jvm.path)
            except (JvmNotFoundError, JvmDownloadError) as e:
                logger.error("%s", e)
                return Result.failure(str(e))
            except HttpError as e:
                logger.error("failed to fetch the java runtime: %s", e)
                return Result.failure(f"failed to fetch the java runtime: {e}")
            except ValueError as e:
                logger.error("invalid metadata for %s: %s", profile.id, e)
                return Result.failure(f"invalid metadata: {e}")
            except OSError as e:
                logger.error("failed to prepare %s: %s", profile.id, e)
                return Result.failure(f"failed to prepare the game: {e}")

            if not natives.success:
                logger.warning("%d native file(s) of %s failed to extract, continuing", len(natives.errors), profile.id)

            try:
                client = self.supervisor.launch(plan)
            except ProcessStartFailure as e:
                return Result.failure(str(e), start_failure=True, exit_code=e.exit_code)
            except ClientAlreadyRunningError as e:
                return Result.failure(str(e))
            except OSError as e:
                logger.error("failed to start the game: %s", e)
                return Result.failure(f"failed to start the game: {e}")

            return Result.ok(pid=client.pid, version=profile.id, plan=plan,
                report=provisioned.report, natives=natives)

    def stop(self) -> Result:
        return Result.ok(stopped=self.supervisor.stop())

    def status(self) -> Result:
        client = self.supervisor.status()
        if client is None:
            return Result.ok(running=False, pid=None, started_at=None)
        return Result.ok(running=True, pid=client.pid, started_at=client.started_at)

    def logout(self) -> Result:
        try:
            self.credentials.logout()
        except OSError as e:
            return Result.failure(f"failed to remove credential file: {e}")
        return Result.ok()

    def _persist(self) -> bool:
        try:
            self.credentials.persist()
        except OSError as e:
            logger.warning("failed to persist credential: %s", e)
            return False
        return True

    def _resolve_jvm(self, profile: VersionProfile, options: LaunchOptions) -> JvmInfo:
        """Find a Java runtime on the system, or install Mojang's one if none is found
        and no explicit runtime is given.
        """

        major_version = required_java_version(profile)
        try:
            jvm = self.jvm_finder(major_version, options.jvm_path)
        except JvmNotFoundError as e:
            component = required_java_component(profile)
            if options.jvm_path is not None or component is None:
                raise
            logger.info("%s, installing java runtime %s", e, component)
            return self.jvm_provider(component, major_version)

        kind = JvmLoadedEvent.BUILTIN if options.jvm_path is None else JvmLoadedEvent.CUSTOM
        publish(self.events, JvmLoadedEvent(jvm.version, kind))
        return jvm


def _required_errors(profile: VersionProfile, report: FetchReport) -> List[FetchError]:
    """Errors of the files the game can't run without, the JAR and the libraries.
    """
    required = {profile.jar_path, *(lib.path for lib in profile.libraries)}
    return [error for error in report.errors if error.path in required]

"""Library to compute the projects affected by a change and build a CI matrix.

A project is a directory directly below the project root. It is affected when
one of its own files changed, or when a changed file matches one of the glob
patterns listed in its `.depends` file. The selected projects are turned into
a GitHub Actions matrix (`{"include": [{"project": ...}, ...]}`) whose first
entry is the root job `"."`.
"""

from collections.abc import Callable, Iterable, Mapping
import json
import logging
import os
import pathlib
import re
from typing import Optional

DEFAULT_PROJECT_ROOT = "project"
REPOSITORY_ROOT = "."
DEPENDS_FILE = ".depends"
ROOT_PROJECT = "."

# Pastas ignoradas implicitamente quando os projetos ficam na raiz do repositório
REPOSITORY_ROOT_IGNORES = frozenset({".github"})

_WILDCARD_RE = re.compile(r"(\*\*|\*)")


def compile_glob(pattern: str) -> Callable[[str], bool]:
    """Compila um padrão glob de `.depends` em um predicado de caminho.

    `**` casa qualquer sequência de caracteres (inclusive `/`), `*` casa
    qualquer sequência dentro de um único segmento e `.` é literal. O padrão
    precisa casar o caminho inteiro. Padrões inválidos nunca casam.
    """
    regex_parts = []
    for token in _WILDCARD_RE.split(pattern):
        if token == "**":
            regex_parts.append(".*")
        elif token == "*":
            regex_parts.append("[^/]*")
        else:
            regex_parts.append(token.replace(".", r"\."))

    try:
        regex = re.compile("".join(regex_parts))
    except re.error as error:
        logging.warning("Ignoring invalid dependency pattern %r: %s", pattern, error)
        return lambda path: False

    return lambda path: regex.fullmatch(path) is not None


class MatrixConfiguration:
    """Parâmetros de uma execução do gerador de matriz."""

    def __init__(self, project_root: str = DEFAULT_PROJECT_ROOT,
                 ignore_list: Iterable[str] = (), include_root: bool = True,
                 verify_dependency_projects: bool = False):
        self.project_root = project_root.strip("/") or DEFAULT_PROJECT_ROOT
        self.ignore_list = frozenset(ignore_list)
        self.include_root = include_root
        self.verify_dependency_projects = verify_dependency_projects

    @classmethod
    def from_environment(cls, environ: Mapping[str, str], **kwargs) -> "MatrixConfiguration":
        """Lê PROJECT_ROOT e IGNORE_LIST do ambiente."""
        return cls(
            project_root=environ.get("PROJECT_ROOT") or DEFAULT_PROJECT_ROOT,
            ignore_list=environ.get("IGNORE_LIST", "").split(),
            **kwargs,
        )

    @property
    def at_repository_root(self) -> bool:
        return self.project_root == REPOSITORY_ROOT

    def ignored_names(self) -> frozenset:
        """Retorna a lista de ignorados efetiva para esta execução."""
        if self.at_repository_root:
            return self.ignore_list | REPOSITORY_ROOT_IGNORES
        return self.ignore_list

    def qualify(self, project: str) -> str:
        """Converte o nome do projeto no caminho relativo à raiz do repositório."""
        if self.at_repository_root:
            return project
        return f"{self.project_root}/{project}"

    def unqualify(self, folder: str) -> str:
        if self.at_repository_root:
            return folder
        return folder.removeprefix(self.project_root + "/")


class RepositoryState:
    """Acesso ao sistema de arquivos do repositório.

    Todos os caminhos são relativos à raiz do repositório e separados por `/`.
    """

    def is_directory(self, path: str) -> bool:
        raise NotImplementedError

    def is_file(self, path: str) -> bool:
        raise NotImplementedError

    def list_directory(self, path: str) -> list[str]:
        """Lista as entradas de um diretório; levanta OSError em caso de falha."""
        raise NotImplementedError

    def read_text(self, path: str) -> str:
        """Lê um arquivo de texto; levanta OSError em caso de falha."""
        raise NotImplementedError


class LocalRepositoryState(RepositoryState):
    """Estado do repositório lido a partir de um checkout local."""

    def __init__(self, root: pathlib.Path):
        self.root = pathlib.Path(root)

    def is_directory(self, path: str) -> bool:
        return (self.root / path).is_dir()

    def is_file(self, path: str) -> bool:
        return (self.root / path).is_file()

    def list_directory(self, path: str) -> list[str]:
        return sorted(os.listdir(self.root / path))

    def read_text(self, path: str) -> str:
        return (self.root / path).read_text(encoding="utf-8")


class DependencyIndex:
    """Avalia os arquivos `.depends` declarados pelos projetos."""

    def __init__(self, configuration: MatrixConfiguration, repository: RepositoryState):
        self.configuration = configuration
        self.repository = repository

    def _depends_path(self, project: str) -> str:
        return f"{self.configuration.qualify(project)}/{DEPENDS_FILE}"

    def discover_declaring_projects(self) -> set[str]:
        """Encontra os projetos que possuem um arquivo `.depends`."""
        try:
            entries = self.repository.list_directory(self.configuration.project_root)
        except FileNotFoundError:
            return set()
        except OSError as error:
            logging.warning("Error reading projects folder %s: %s",
                            self.configuration.project_root, error)
            return set()

        return {entry for entry in entries if self.repository.is_file(self._depends_path(entry))}

    def load_patterns(self, project: str) -> list[str]:
        """Lê os padrões do `.depends` de um projeto, ignorando linhas vazias."""
        content = self.repository.read_text(self._depends_path(project))
        return [line.strip() for line in content.splitlines() if line.strip()]

    def evaluate(self, changed_files: list[str], declaring_projects: Iterable[str]) -> set[str]:
        """Retorna os projetos acionados por algum arquivo modificado."""
        triggered_projects = set()

        for project in sorted(declaring_projects):
            try:
                patterns = self.load_patterns(project)
            except (OSError, UnicodeDecodeError) as error:
                logging.error("Error reading .depends file for %s: %s", project, error)
                continue

            matchers = [compile_glob(pattern) for pattern in patterns]
            if any(matcher(path) for path in changed_files for matcher in matchers):
                logging.info("Project %s triggered by its .depends file", project)
                triggered_projects.add(project)

        return triggered_projects


class ProjectSelector:
    """Combina projetos modificados diretamente e projetos acionados por dependências."""

    def __init__(self, configuration: MatrixConfiguration, repository: RepositoryState,
                 dependency_index: Optional[DependencyIndex] = None):
        self.configuration = configuration
        self.repository = repository
        self.dependency_index = dependency_index or DependencyIndex(configuration, repository)

    def _get_folder_for_file(self, changed_file: str) -> Optional[str]:
        """Obtém a pasta do projeto que contém o arquivo, se houver."""
        if self.configuration.at_repository_root:
            relative_path = changed_file
        else:
            prefix = self.configuration.project_root + "/"
            if not changed_file.startswith(prefix):
                return None
            relative_path = changed_file[len(prefix):]

        project = relative_path.split("/")[0]
        # Arquivos soltos como `project/README.md` são descartados pelo filtro de existência
        if not project:
            return None
        return self.configuration.qualify(project)

    def get_modified_folders(self, changed_files: list[str]) -> set[str]:
        """Obtém as pastas de projetos tocadas diretamente pelos arquivos."""
        folders = set()
        for changed_file in changed_files:
            folder = self._get_folder_for_file(changed_file)
            if folder is not None:
                folders.add(folder)
        return folders

    def get_dependency_folders(self, changed_files: list[str]) -> set[str]:
        """Obtém as pastas de projetos acionados via `.depends`."""
        declaring_projects = self.dependency_index.discover_declaring_projects()
        triggered = self.dependency_index.evaluate(changed_files, declaring_projects)
        return {self.configuration.qualify(project) for project in triggered}

    def _folder_exists(self, folder: str, from_dependency: bool) -> bool:
        # Projetos com `.depends` já foram encontrados no disco durante a descoberta
        if from_dependency and not self.configuration.verify_dependency_projects:
            return True
        return self.repository.is_directory(folder)

    def select(self, changed_files: list[str]) -> list[str]:
        """Calcula a lista ordenada de projetos afetados."""
        dependency_folders = self.get_dependency_folders(changed_files)
        folders = self.get_modified_folders(changed_files) | dependency_folders
        ignored = self.configuration.ignored_names()

        projects = set()
        for folder in folders:
            if not self._folder_exists(folder, folder in dependency_folders):
                logging.info("Skipping %s: not a directory", folder)
                continue

            project = self.configuration.unqualify(folder)
            if project in ignored or folder in ignored:
                logging.info("Skipping %s: ignored", folder)
                continue

            projects.add(project)

        return sorted(projects)


def generate_matrix(projects: list[str], include_root: bool = True) -> dict:
    """Monta o objeto de matriz a partir da lista de projetos."""
    include = [{"project": ROOT_PROJECT}] if include_root else []
    include.extend({"project": project} for project in projects)
    return {"include": include}


def format_matrix(matrix: dict) -> str:
    return json.dumps(matrix, separators=(",", ":"))


def compute_matrix(changed_files: list[str], configuration: MatrixConfiguration,
                   repository: RepositoryState) -> dict:
    """Calcula a matriz completa para uma lista de arquivos modificados."""
    if not changed_files:
        return generate_matrix([], configuration.include_root)

    if not repository.is_directory(configuration.project_root):
        logging.info("Project root %s does not exist", configuration.project_root)
        return generate_matrix([], configuration.include_root)

    selector = ProjectSelector(configuration, repository)
    return generate_matrix(selector.select(changed_files), configuration.include_root)

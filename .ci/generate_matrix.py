"""Generate a GitHub Actions matrix of the projects affected by a change.

Reads the list of changed files (one per line) from stdin and prints a JSON
matrix object such as `{"include":[{"project":"."},{"project":"api"}]}`.

Usage: git diff --name-only origin/main...HEAD | python generate_matrix.py

Environment variables:
  PROJECT_ROOT - folder containing the projects (default: 'project'); '.'
                 means the projects live at the repository root.
  IGNORE_LIST  - space-separated list of projects to never include.
"""

import argparse
import logging
import os
import pathlib
import subprocess
import sys

import generate_matrix_lib


def git_root() -> pathlib.Path:
    """Retorna a raiz do repositório git atual."""
    output = subprocess.check_output(
        ["git", "rev-parse", "--show-toplevel"], text=True
    )
    return pathlib.Path(output.strip())


def read_changed_files(stream) -> list[str]:
    """Lê a lista de arquivos modificados, descartando linhas em branco."""
    return [line.strip() for line in stream if line.strip()]


def write_github_output(matrix_json: str):
    """Anexa a matriz ao arquivo de saída do GitHub Actions."""
    output_file = os.environ.get("GITHUB_OUTPUT")
    if not output_file:
        logging.warning("GITHUB_OUTPUT is not set, skipping step output")
        return

    with open(output_file, "a", encoding="utf-8") as file:
        file.write(f"matrix={matrix_json}\n")


def main():
    parser = argparse.ArgumentParser(
        description="Generate a CI matrix from a list of changed files"
    )
    parser.add_argument(
        "--no-root",
        action="store_true",
        help="Do not include the root ('.') job in the matrix.",
    )
    parser.add_argument(
        "--verify-dependency-projects",
        action="store_true",
        help="Also check that projects triggered by .depends files exist.",
    )
    parser.add_argument(
        "--github-output",
        action="store_true",
        help="Also write 'matrix=<json>' to the file named by $GITHUB_OUTPUT.",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Log why projects are selected."
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    configuration = generate_matrix_lib.MatrixConfiguration.from_environment(
        os.environ,
        include_root=not args.no_root,
        verify_dependency_projects=args.verify_dependency_projects,
    )

    try:
        changed_files = read_changed_files(sys.stdin)

        # Sem arquivos modificados não é preciso consultar o repositório
        repository = None
        if changed_files:
            repository = generate_matrix_lib.LocalRepositoryState(git_root())
        matrix = generate_matrix_lib.compute_matrix(
            changed_files, configuration, repository
        )

        matrix_json = generate_matrix_lib.format_matrix(matrix)
        if args.github_output:
            write_github_output(matrix_json)
    except (OSError, UnicodeDecodeError, subprocess.CalledProcessError) as error:
        logging.error("Error: %s", error)
        sys.exit(1)

    print(matrix_json)


if __name__ == "__main__":
    main()

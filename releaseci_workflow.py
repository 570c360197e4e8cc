# releaseci_workflow.py
# Release pipeline for a desktop app: linux (glibc + musl) and macOS builds, published on v* tags
from __future__ import annotations
from releaseci.dsl import artifact, cache, define, job, on_failure, sh, variant

CARGO_PATHS = ["~/.cargo/registry", "~/.cargo/git", "target"]


def pipeline():
    build = job(
        "build",
        sh("Build", "./docker_build.sh", only=["linux"]),
        sh(
            "Build",
            "RUSTFLAGS='-C target-feature=-crt-static' cargo build --release"
            " && cd target/release && tar czf weylus-linux-alpine-musl.tar.gz weylus",
            only=["linux-alpine"],
        ),
        sh(
            "Download deps",
            "npm install -g typescript && brew install nasm && cargo install cargo-bundle",
            only=["macos"],
        ),
        sh("Build", "cargo bundle --release", only=["macos"]),
        sh("Package", "cd target/release/bundle/osx/ && zip -r macOS.zip Weylus.app", only=["macos"]),
        variants=[
            variant(
                "linux",
                "linux",
                runner="ubuntu-latest",
                container="hhmhh/weylus_build:latest",
            ),
            variant(
                "linux-alpine",
                "linux",
                runner="ubuntu-latest",
                container="hhmhh/weylus_build_alpine:latest",
            ),
            variant(
                "macos",
                "macos",
                runner="macos-latest",
            ),
        ],
        caches=[
            cache("deps", paths=["deps/dist*"], key_files=["deps/*"]),
            cache("cargo", paths=CARGO_PATHS, key_files=["Cargo.lock"]),
        ],
        artifacts=[
            artifact("linux", "packages/weylus-linux.zip", only=["linux"]),
            artifact("linux-deb", "packages/Weylus*.deb", only=["linux"]),
            # the linux container cross-compiles the windows package too
            artifact("windows", "packages/weylus-windows.zip", only=["linux"]),
            artifact("linux-alpine-musl", "target/release/weylus-linux-alpine-musl.tar.gz", only=["linux-alpine"]),
            artifact("macOS", "target/release/bundle/osx/macOS.zip", only=["macos"]),
        ],
        failure=on_failure(
            "deps/ffmpeg/ffbuild",
            debug_session=True,
            secrets=["NGROK_AUTH_TOKEN", "SSH_PASS"],
            region="eu",
        ),
        # tag pushes rebuild from scratch so the published assets match the tagged commit
        rebuild_on_tag=True,
    )

    return define(
        "Build",
        build,
        push_branches=["*"],
        tags=["v*"],
        pull_request_branches=["master"],
        prerelease=False,
    )

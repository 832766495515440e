"""Implement package references.

Package references provide a general type to represent referencing images within a registry. They are used here to
derive the short, stable name of the image that is built for a runner.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Final, cast

import parsy as p
from parsy import Parser

DEFAULT_DOMAIN: Final[str] = "docker.io"
LEGACY_DEFAULT_DOMAIN: Final[str] = "index.docker.io"
OFFICIAL_REPOSITORY_PREFIX: Final[str] = "library"
REPOSITORY_NAME_LENGTH: Final[int] = 7


@dataclass(frozen=True)
class Digest:
    """The encoded digest and algorithm."""

    algorithm: tuple[str, ...]
    digest_hex: str

    def __str__(self) -> str:
        return f"{"+".join(self.algorithm)}:{self.digest_hex}"


@dataclass(frozen=True)
class Domain:
    """A registry host with optional port."""

    host: str
    port: int | None

    def __str__(self) -> str:
        return f"{self.host}:{self.port}" if self.port is not None else self.host

    @property
    def is_registry(self) -> bool:
        """Whether this component can only be a registry host and not the first path segment of an image."""
        return "." in self.host or self.port is not None or self.host == "localhost" or self.host.startswith("[")


@dataclass(frozen=True)
class PackageName:
    """A package or image name."""

    domain: Domain | None
    path: tuple[str, ...]

    def __str__(self) -> str:
        return f"{self.domain}/{"/".join(self.path)}" if self.domain else "/".join(self.path)

    def normalized(self) -> PackageName:
        """Return the fully qualified name, e.g. `ubuntu` becomes `docker.io/library/ubuntu`.

        The first path component is only treated as a registry when it looks like a host, the same way
        docker resolves short names.
        """
        domain, path = self.domain, self.path
        if domain is not None and not domain.is_registry:
            path = (str(domain), *path)
            domain = None
        if domain is None or str(domain) == LEGACY_DEFAULT_DOMAIN:
            domain = Domain(DEFAULT_DOMAIN, None)
        if str(domain) == DEFAULT_DOMAIN and len(path) == 1:
            path = (OFFICIAL_REPOSITORY_PREFIX, *path)
        return PackageName(domain, path)


@dataclass(frozen=True)
class PackageReference:
    """A package reference."""

    name: PackageName
    tag: str | None
    digest: Digest | None

    def __str__(self) -> str:
        tag_suf = f":{self.tag}" if self.tag else ""
        dig_suf = f"@{self.digest}" if self.digest else ""
        return f"{self.name}{tag_suf}{dig_suf}"

    @classmethod
    def parse(cls, s: str) -> PackageReference:
        """Parses a package reference string."""
        return cast(PackageReference, _PackageReferenceParser.reference.parse(s.strip()))

    @classmethod
    def parse_normalized(cls, s: str) -> PackageReference:
        """Parses a package reference and qualifies its name."""
        ref = cls.parse(s)
        return PackageReference(ref.name.normalized(), ref.tag, ref.digest)


class _ParserHelper:
    @classmethod
    def is_alpha(cls, c: str) -> bool:
        return ("a" <= c <= "z") or ("A" <= c <= "Z")

    @classmethod
    def is_alphanum(cls, c: str) -> bool:
        return cls.is_alpha(c) or ("0" <= c <= "9")

    @classmethod
    def is_alphanum_lc(cls, c: str) -> bool:
        return ("a" <= c <= "z") or ("0" <= c <= "9")

    @classmethod
    def is_word(cls, c: str) -> bool:
        return cls.is_alphanum(c) or c == "_"

    @classmethod
    def is_alphanum_hyphen(cls, c: str) -> bool:
        return cls.is_alphanum(c) or c == "-"

    @classmethod
    def is_word_ext(cls, c: str) -> bool:
        return cls.is_word(c) or c in ".-"

    @classmethod
    def is_hex(cls, c: str) -> bool:
        return ("a" <= c <= "f") or ("A" <= c <= "F") or ("0" <= c <= "9")

    @classmethod
    def is_ipv6(cls, c: str) -> bool:
        return cls.is_hex(c) or c in ":."


class _PackageReferenceParser:
    """Parser for image references, grammar from https://pkg.go.dev/github.com/distribution/reference."""

    alpha: Parser = p.test_char(_ParserHelper.is_alpha, "[a-zA-Z]")
    alphanum: Parser = p.test_char(_ParserHelper.is_alphanum, "[a-zA-Z0-9]")
    alphanum_lc: Parser = p.test_char(_ParserHelper.is_alphanum_lc, "[a-z0-9]")
    alphanum_hyphen: Parser = p.test_char(_ParserHelper.is_alphanum_hyphen, "[a-zA-Z0-9-]")
    hex_str: Parser = p.test_char(_ParserHelper.is_hex, "[a-fA-F0-9]")

    digest_hex: Parser = hex_str.at_least(32).concat()
    digest_algo_component: Parser = p.seq(alpha, alphanum.many().concat()).concat()
    digest_algo_sep: Parser = p.char_from("+.-_")
    digest_algo: Parser = digest_algo_component.sep_by(digest_algo_sep, min=1).map(tuple)
    digest: Parser = p.seq(digest_algo, p.string(":") >> digest_hex).map(lambda e: Digest(e[0], e[1]))

    tag: Parser = p.seq(
        p.test_char(_ParserHelper.is_word, "[A-Za-z0-9_]"),
        p.test_char(_ParserHelper.is_word_ext, "[A-Za-z0-9_.-]").at_most(127).concat(),
    ).concat()

    # repository paths are lower case only, upper case names are rejected like docker does
    path_comp_sep: Parser = p.alt(
        p.string("__"), p.test_char(lambda c: c in "_.", "[_.]"), p.string("-").at_least(1).concat()
    )
    path_component: Parser = p.seq(
        alphanum_lc.at_least(1).concat(),
        p.seq(path_comp_sep, alphanum_lc.at_least(1).concat()).concat().many().concat(),
    ).concat()
    path: Parser = path_component.sep_by(p.string("/"), min=1).map(tuple)

    port_number: Parser = p.digit.at_least(1).concat().map(int)

    domain_component: Parser = (
        alphanum_hyphen.at_least(1)
        .concat()
        .bind(
            lambda result: p.success(result)
            if result[0].isalnum() and result[-1].isalnum()
            else p.fail("Must start and end with alphanum")
        )
    )
    ipv6_host: Parser = (
        p.string("[") >> p.test_char(_ParserHelper.is_ipv6, "[a-fA-F0-9:.]").at_least(2).concat() << p.string("]")
    ).map(lambda e: f"[{e}]")
    host: Parser = ipv6_host | domain_component.sep_by(p.string("."), min=1).map(".".join)
    domain: Parser = p.seq(host, (p.string(":") >> port_number).optional()).map(lambda e: Domain(e[0], e[1]))

    name: Parser = p.seq((domain << p.string("/")).optional(), path).map(lambda e: PackageName(e[0], e[1]))

    reference: Parser = p.seq(name, (p.string(":") >> tag).optional(), (p.string("@") >> digest).optional()).map(
        lambda e: PackageReference(e[0], e[1], e[2])
    )


def repository_name(image: str, binary_version: str, runner_version: str) -> str:
    """Derive the name of the image repository built for a runner.

    The name is the first 7 hex characters of the sha256 of the normalized image name (tag and digest stripped)
    followed by both versions, so upgrading the controller or the runner invalidates the build cache. References
    that cannot be parsed are hashed verbatim instead of failing.
    """
    try:
        key = str(PackageReference.parse_normalized(image).name)
    except p.ParseError:
        key = image
    return hashlib.sha256(f"{key}{binary_version}{runner_version}".encode()).hexdigest()[:REPOSITORY_NAME_LENGTH]

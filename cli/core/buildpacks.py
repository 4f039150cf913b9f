"""Language buildpacks that synthesize a Dockerfile for a repository.

Buildpacks are tried in declaration order and the first match wins, so
framework buildpacks must stay ahead of the catch-all ``static`` one (a
Node app usually also ships an ``index.html``).  A repository that carries
its own Dockerfile never reaches detection; see
:func:`has_custom_build_file`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from jinja2 import Environment, Template

from cli.core.exceptions import BuildError

DOCKERFILE_NAME = "Dockerfile"
CUSTOM_BUILDPACK = "custom"

_env = Environment(
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
    autoescape=False,
)

_NODEJS = """\
FROM node:20-alpine
WORKDIR /app
COPY package*.json ./
RUN npm ci --only=production
COPY . .
RUN npm run build --if-present
EXPOSE {{ env.PORT | default(3000, true) }}
CMD ["npm", "start"]
"""

_PYTHON = """\
FROM python:3.12-slim
WORKDIR /app
COPY requirements.txt* pyproject.toml* ./
RUN pip install --no-cache-dir -r requirements.txt 2>/dev/null || pip install --no-cache-dir .
COPY . .
EXPOSE {{ env.PORT | default(8000, true) }}
CMD ["sh", "-c", "python app.py 2>/dev/null || python main.py 2>/dev/null || python -m uvicorn main:app --host 0.0.0.0 --port ${PORT:-8000}"]
"""

_GO = """\
FROM golang:1.22-alpine AS builder
WORKDIR /app
COPY go.* ./
RUN go mod download
COPY . .
RUN CGO_ENABLED=0 go build -o main .
FROM alpine:latest
WORKDIR /app
COPY --from=builder /app/main .
EXPOSE {{ env.PORT | default(8080, true) }}
CMD ["./main"]
"""

_RUBY = """\
FROM ruby:3.3-slim
WORKDIR /app
RUN apt-get update -qq && apt-get install -y build-essential libpq-dev nodejs
COPY Gemfile* ./
RUN bundle install --without development test
COPY . .
RUN if [ -f "Rakefile" ]; then bundle exec rake assets:precompile 2>/dev/null || true; fi
EXPOSE {{ env.PORT | default(3000, true) }}
CMD ["sh", "-c", "bundle exec rails server -b 0.0.0.0 -p ${PORT:-3000} 2>/dev/null || bundle exec ruby app.rb"]
"""

_RUST = """\
FROM rust:1.75-slim AS builder
WORKDIR /app
COPY Cargo.toml Cargo.lock* ./
RUN mkdir src && echo "fn main() {}" > src/main.rs && cargo build --release && rm -rf src
COPY . .
RUN touch src/main.rs && cargo build --release \\
    && find target/release -maxdepth 1 -type f -perm -u+x -exec cp {} /app/app \\;
FROM debian:bookworm-slim
WORKDIR /app
COPY --from=builder /app/app ./app
EXPOSE {{ env.PORT | default(8080, true) }}
CMD ["./app"]
"""

_JAVA = """\
FROM eclipse-temurin:21-jdk AS builder
WORKDIR /app
COPY . .
RUN if [ -f "mvnw" ]; then chmod +x mvnw && ./mvnw package -DskipTests; \\
    elif [ -f "pom.xml" ]; then apt-get update && apt-get install -y maven && mvn package -DskipTests; \\
    elif [ -f "gradlew" ]; then chmod +x gradlew && ./gradlew build -x test; fi \\
    && cp $(ls target/*.jar build/libs/*.jar 2>/dev/null | head -n 1) /app/app.jar
FROM eclipse-temurin:21-jre
WORKDIR /app
COPY --from=builder /app/app.jar app.jar
EXPOSE {{ env.PORT | default(8080, true) }}
CMD ["java", "-jar", "app.jar"]
"""

_PHP = """\
FROM php:8.3-apache
RUN apt-get update && apt-get install -y libpng-dev libjpeg-dev libfreetype6-dev libzip-dev unzip \\
    && docker-php-ext-configure gd --with-freetype --with-jpeg \\
    && docker-php-ext-install gd pdo pdo_mysql zip
COPY --from=composer:latest /usr/bin/composer /usr/bin/composer
WORKDIR /var/www/html
COPY . .
RUN if [ -f "composer.json" ]; then composer install --no-dev --optimize-autoloader; fi
RUN chown -R www-data:www-data /var/www/html && a2enmod rewrite
EXPOSE 80
CMD ["apache2-foreground"]
"""

_ELIXIR = """\
FROM elixir:1.16-alpine AS builder
WORKDIR /app
RUN mix local.hex --force && mix local.rebar --force
ENV MIX_ENV=prod
COPY mix.exs mix.lock* ./
COPY config config
RUN mix deps.get --only prod && mix deps.compile
COPY . .
RUN mix compile && mix release
FROM alpine:latest
WORKDIR /app
RUN apk add --no-cache libstdc++ openssl ncurses-libs
COPY --from=builder /app/_build/prod/rel/app ./
EXPOSE {{ env.PORT | default(4000, true) }}
CMD ["bin/app", "start"]
"""

_STATIC = """\
FROM nginx:alpine
COPY . /usr/share/nginx/html
EXPOSE 80
CMD ["nginx", "-g", "daemon off;"]
"""


@dataclass(frozen=True)
class Buildpack:
    name: str
    markers: tuple[str, ...]
    template: str

    def detect(self, file_names: Iterable[str]) -> bool:
        files = set(file_names)
        return any(marker in files for marker in self.markers)

    def render(self, env_vars: Mapping[str, str] | None = None) -> str:
        """Return the Dockerfile text for this buildpack.

        ``PORT`` is the only value written into the file; an empty one falls
        back to the buildpack default and anything but a port number raises
        :class:`BuildError`.
        """
        env = dict(env_vars or {})
        port = env.get("PORT", "").strip()
        if port and not (port.isascii() and port.isdigit() and 0 < int(port) < 65536):
            raise BuildError(f"PORT must be a port number, got {env['PORT']!r}")
        env["PORT"] = port
        return _compiled(self.template).render(env=env)


_templates: dict[str, Template] = {}


def _compiled(source: str) -> Template:
    tmpl = _templates.get(source)
    if tmpl is None:
        tmpl = _templates[source] = _env.from_string(source)
    return tmpl


BUILDPACKS: tuple[Buildpack, ...] = (
    Buildpack("nodejs", ("package.json",), _NODEJS),
    Buildpack("python", ("requirements.txt", "pyproject.toml"), _PYTHON),
    Buildpack("go", ("go.mod",), _GO),
    Buildpack("ruby", ("Gemfile",), _RUBY),
    Buildpack("rust", ("Cargo.toml",), _RUST),
    Buildpack("java", ("pom.xml", "build.gradle", "build.gradle.kts"), _JAVA),
    Buildpack("php", ("composer.json", "index.php"), _PHP),
    Buildpack("elixir", ("mix.exs",), _ELIXIR),
    Buildpack("static", ("index.html",), _STATIC),
)


def has_custom_build_file(file_names: Iterable[str]) -> bool:
    return DOCKERFILE_NAME in set(file_names)


def detect(file_names: Iterable[str]) -> Buildpack | None:
    """Return the first buildpack matching the repository's top-level files."""
    files = list(file_names)
    for bp in BUILDPACKS:
        if bp.detect(files):
            return bp
    return None


def get_buildpack(name: str) -> Buildpack | None:
    for bp in BUILDPACKS:
        if bp.name == name:
            return bp
    return None

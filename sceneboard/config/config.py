import os

import toml
import yaml
from dotenv import load_dotenv


def _package_root():
    # sceneboard/config/config.py -> sceneboard/config -> sceneboard
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def get_default_config():
    """Get default configuration"""
    return {
        # Logging
        "log_file": "logs/sceneboard.log",
        "log_level": "INFO",
        "log_console": True,

        # Server
        "server_host": "0.0.0.0",
        "server_port": 8000,

        # When set, scene operations call a remote sceneboard server instead of
        # running the generation tools in-process.
        "generation_backend_url": "",
        "request_timeout_sec": 120,

        # Other settings
        "proxy_host": "",
        "proxy_port": "",

        # Generation tools configuration (merged from yaml and env)
        "gen_tools": {},
    }


def load_gen_tools_config(package_root, env_vars):
    """
    Load generation tools configuration from YAML and override with environment variables.
    """
    config_dir = os.path.join(package_root, "config", "gen_tools_config")
    config_path = os.path.join(config_dir, "config.yaml")
    if not os.path.exists(config_path):
        config_path = os.path.join(config_dir, "config.example.yaml")

    gen_config = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            gen_config = yaml.safe_load(f) or {}

    def set_config(section, key, value):
        if value:
            gen_config.setdefault(section, {})[key] = value

    set_config("image_gen", "model", env_vars.get("IMAGE_MODEL"))
    set_config("video_gen", "model", env_vars.get("VIDEO_MODEL"))
    set_config("replicate", "base_url", env_vars.get("REPLICATE_BASE_URL"))

    return gen_config


def load_config(config_file=None, env_vars=None):
    """Load configuration from the TOML file, merged with defaults and environment"""
    package_root = _package_root()
    config_file = config_file or os.getenv(
        "SCENEBOARD_CONFIG", os.path.join(package_root, "config", "config.toml")
    )

    config = get_default_config()
    if os.path.exists(config_file):
        with open(config_file, "r", encoding="utf-8") as f:
            config.update(toml.load(f))

    if env_vars is None:
        load_dotenv(override=False)
        env_vars = dict(os.environ)

    if "LOG_FILE" in env_vars:
        config["log_file"] = env_vars["LOG_FILE"]
    if "LOG_LEVEL" in env_vars:
        config["log_level"] = env_vars["LOG_LEVEL"].upper()
    if "SERVER_HOST" in env_vars:
        config["server_host"] = env_vars["SERVER_HOST"]
    if "SERVER_PORT" in env_vars:
        config["server_port"] = int(env_vars["SERVER_PORT"])
    if "GENERATION_BACKEND_URL" in env_vars:
        config["generation_backend_url"] = env_vars["GENERATION_BACKEND_URL"].strip()
    if "REQUEST_TIMEOUT_SEC" in env_vars:
        config["request_timeout_sec"] = int(env_vars["REQUEST_TIMEOUT_SEC"])

    # Proxy
    if "PROXY_HOST" in env_vars: config["proxy_host"] = env_vars["PROXY_HOST"]
    if "PROXY_PORT" in env_vars: config["proxy_port"] = env_vars["PROXY_PORT"]

    config["gen_tools"] = load_gen_tools_config(package_root, env_vars)

    # Set up proxy settings if configured
    proxy_host = config.get("proxy_host")
    proxy_port = config.get("proxy_port")
    if proxy_host and proxy_port:
        os.environ["http_proxy"] = f"http://{proxy_host}:{proxy_port}"
        os.environ["https_proxy"] = f"http://{proxy_host}:{proxy_port}"

    return config_file, config


CONFIG_FILE, config = load_config()

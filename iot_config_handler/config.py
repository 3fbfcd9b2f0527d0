from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # OPC UA server defaults
    default_ip: str = "192.168.0.1"
    default_username: str = "opcuser"
    default_password: str = ""
    opc_port: int = 4840
    nodeset_namespace_index: int = 2
    default_namespace: str = "2"
    default_node_interval: str = "1000ms"

    # IOT2050 SSH defaults
    default_iot_ip: str = "192.168.200.1:22"
    default_iot_password: str = ""
    iot_username: str = "root"
    ssh_key_file: str = ""
    ssh_timeout: int = 30
    remote_config_path: str = "/etc/telegraf/telegraf.conf"

    # Remote commands
    restart_command: str = "sudo systemctl restart telegraf"
    status_command: str = "systemctl is-active --quiet telegraf && echo 'active' || echo 'failed'"
    detailed_status_command: str = "sudo systemctl status telegraf --no-pager"
    restart_wait_seconds: float = 5.0
    remote_log_file: str = "/var/log/telegraf/telegraf.log"
    influx_data_path: str = "/var/lib/influxdb2"
    influx_backup_timeout: float = 600.0
    grafana_config_path: str = "/etc/grafana/grafana.ini"
    grafana_backup_file: str = "grafana_backup.ini"

    # Telegraf agent / InfluxDB output
    agent_interval: str = "1000ms"
    influx_token: str = ""
    influx_url: str = "http://127.0.0.1:8086"
    influx_org: str = "org"
    influx_bucket: str = "line"
    token_file_name: str = "token.txt"
    config_file_name: str = "telegraf.conf"

    # Application Settings
    log_level: str = "WARNING"

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()

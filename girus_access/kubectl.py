"""kubectl command construction."""


def base_args(config) -> list[str]:
    args = [config.kubectl]
    if config.kube_context:
        args += ["--context", config.kube_context]
    return args


def port_forward_args(config, mapping, target_kind="svc") -> list[str]:
    """
    Build a `kubectl port-forward` command for one mapping.

    Args:
        config: SupervisorConfig
        mapping: ForwardMapping to forward
        target_kind: 'svc' for the Service, 'deployment' for the workload itself

    Returns:
        list: Command and arguments
    """
    name = mapping.remote_service if target_kind == "svc" else mapping.deployment
    return base_args(config) + [
        "port-forward",
        "-n", mapping.remote_namespace,
        f"{target_kind}/{name}",
        f"{mapping.local_port}:{mapping.remote_port}",
        "--address", config.bind_address,
    ]

# scripts/gradcheck_nets.py
import typer, pathlib
from gradcert.check import GradientChecker, ToleranceConfig, save_report, result_to_dict
from gradcert.core import init_logger, load_yaml, save_json
from gradcert.datasets.toy import make_ff_data, make_image_data, make_index_data, make_sequence_data
from gradcert.nn import MultiLayerNetwork, NetworkConfig
from gradcert.nn.zoo import SCENARIOS

app = typer.Typer(add_completion=False)


def _config(tolerance: str, print_results: bool, first_failure: bool) -> ToleranceConfig:
    cfg = ToleranceConfig.from_yaml(tolerance) if tolerance else ToleranceConfig()
    d = cfg.to_dict()
    d["print_results"] = d["print_results"] or print_results
    d["return_on_first_failure"] = d["return_on_first_failure"] or first_failure
    return ToleranceConfig(**d)


def _data(spec: dict, minibatch: int, seed: int):
    kind = spec.get("data", "feed_forward")
    n_in, n_out = int(spec["n_in"]), int(spec["n_out"])
    if kind == "feed_forward":
        return make_ff_data(minibatch, n_in, n_out, seed=seed)
    if kind == "sequence":
        return make_sequence_data(minibatch, n_in, n_out, steps=int(spec.get("steps", 3)), seed=seed)
    if kind == "index":
        return make_index_data(minibatch, n_in, n_out)
    if kind == "image":
        h, w, c = spec["image"]
        return make_image_data(minibatch, int(h), int(w), int(c), n_out, seed=seed)
    raise typer.BadParameter(f"unknown data kind {kind!r}")


def _yaml_cases(path: str):
    """Scenarios file: {networks: {name: {network: {...}, n_in, n_out, data, minibatches}}}."""
    payload = load_yaml(path)
    for name, spec in payload.get("networks", {}).items():
        for mb in spec.get("minibatches", [1, 4]):
            net = MultiLayerNetwork(NetworkConfig.from_dict(spec["network"])).init()
            X, Y = _data(spec, int(mb), int(spec["network"].get("seed", 12345)))
            yield f"{name}: minibatch={mb}", net, X, Y


@app.command()
def main(scenario: str = "all",
         scenarios_file: str = "",
         tolerance: str = "",
         workers: int = 1,
         print_results: bool = False,
         first_failure: bool = False,
         log_level: str = "INFO",
         report: str = ""):
    """Certify the reference networks (or those in a scenarios YAML) against finite differences."""
    log = init_logger("gradcert", log_level)
    checker = GradientChecker(_config(tolerance, print_results, first_failure), workers=workers)
    if scenarios_file:
        cases = list(_yaml_cases(scenarios_file))
    elif scenario == "all":
        cases = [c for make in SCENARIOS.values() for c in make()]
    elif scenario in SCENARIOS:
        cases = list(SCENARIOS[scenario]())
    else:
        raise typer.BadParameter(f"scenario must be 'all' or one of {sorted(SCENARIOS)}")

    results, n_fail = {}, 0
    for label, net, X, Y in cases:
        log.info(f"--- {label} ({net.num_params()} params)")
        res = checker.run(net, X, Y)
        results[label] = result_to_dict(res)
        n_fail += not res.overall_pass
        typer.echo(f"{'PASS' if res else 'FAIL'}  {label}: {res.summary()}")

    if report:
        path = pathlib.Path(report)
        if len(cases) == 1:
            save_report(path, res)
        else:
            save_json(path, results)
        typer.echo(f"Report -> {path}")
    typer.echo(f"{len(cases) - n_fail}/{len(cases)} configurations passed")
    if n_fail:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

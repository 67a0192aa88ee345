## templates
from jinja2 import Environment, StrictUndefined

env = Environment(keep_trailing_newline=True, trim_blocks=True, lstrip_blocks=True)
env.undefined = StrictUndefined

def render(template, args):
    ''' return a string with a rendered template '''
    t = env.from_string(template)
    return t.render(args)

daemon_unit = """
[Unit]
Description=Netmaker OVS obfuscation rotation daemon
After=network-online.target openvswitch-switch.service {{ hook_service }}
Wants=network-online.target
Requires=openvswitch-switch.service

[Service]
Type=simple
Environment=NMOBFS_CONFIG={{ config }}
ExecStart={{ command }} daemon
Restart=on-failure
RestartSec=10
KillSignal=SIGTERM

[Install]
WantedBy=multi-user.target
""".lstrip()

hook_unit = """
[Unit]
Description=Attach Netmaker interfaces to OVS bridge {{ bridge }}
After=network-online.target openvswitch-switch.service netclient.service
Requires=openvswitch-switch.service

[Service]
Type=oneshot
RemainAfterExit=yes
Environment=NMOBFS_CONFIG={{ config }}
{% if interfaces %}
{% for iface in interfaces %}
ExecStart={{ command }} attach --port {{ iface }} {{ bridge }}
ExecStop={{ command }} detach --port {{ iface }} {{ bridge }}
{% endfor %}
{% else %}
TimeoutStartSec=120
ExecStart={{ command }} attach --port
ExecStop={{ command }} detach --port
{% endif %}

[Install]
WantedBy=multi-user.target
""".lstrip()

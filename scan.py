import asyncio
from bleak import BleakScanner

from dbsctrl.core import NODE_SERVICE_UUID


async def main():
    """Scan for BLE devices and print them, marking stimulation nodes."""
    print("Scanning for BLE devices...")
    found = await BleakScanner.discover(return_adv=True)
    print(f"\nFound {len(found)} device(s):\n")
    for device, adv in found.values():
        marker = "*" if NODE_SERVICE_UUID in adv.service_uuids else " "
        print(f"{marker} {device.address}  {device.name or 'Unknown'}  RSSI {adv.rssi}")


if __name__ == "__main__":
    asyncio.run(main())

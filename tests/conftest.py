"""
Shared sample exports for the test suite.
"""

import pytest

from rungscope.config import RungscopeConfig
from rungscope.store import SnapshotStore

SAMPLE_L5X = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<RSLogix5000Content SchemaRevision="1.0" SoftwareRevision="33.01" TargetName="Plant" TargetType="Controller" ContainsContext="false" ExportDate="Mon Jan 01 12:00:00 2024">
<Controller Use="Target" Name="Plant" ProcessorType="1756-L83E" MajorRev="33" MinorRev="11">
<DataTypes>
<DataType Name="MotorData" Family="NoFamily" Class="User">
<Description><![CDATA[Motor status block]]></Description>
<Members>
<Member Name="ZZZZZZZZZZMotorData0" DataType="SINT" Dimension="0" Radix="Decimal" Hidden="true" ExternalAccess="Read/Write"/>
<Member Name="Running" DataType="BIT" Dimension="0" Radix="Decimal" Hidden="false" Target="ZZZZZZZZZZMotorData0" BitNumber="0" ExternalAccess="Read/Write"/>
<Member Name="Speed" DataType="REAL" Dimension="0" Radix="Float" Hidden="false" ExternalAccess="Read/Write">
<Description><![CDATA[Speed in RPM]]></Description>
</Member>
</Members>
</DataType>
</DataTypes>
<Modules>
<Module Name="Local" CatalogNumber="1756-L83E" ParentModule="Local" ParentModPortId="1">
<Ports>
<Port Id="1" Address="0" Type="ICP" Upstream="true"/>
</Ports>
</Module>
<Module Name="DI_Card" CatalogNumber="1756-IB16" ParentModule="Local" ParentModPortId="1">
<Ports>
<Port Id="1" Address="2" Type="ICP" Upstream="true"/>
</Ports>
<Communications CommMethod="536870914">
<ConfigTag ConfigSize="44"/>
</Communications>
</Module>
</Modules>
<AddOnInstructionDefinitions>
<AddOnInstructionDefinition Name="Valve_Ctl" Revision="1.2" Vendor="Acme" ExecutePrescan="false" ExecutePostscan="false" ExecuteEnableInFalse="false" CreatedDate="2024-01-01T00:00:00.000Z" CreatedBy="eng" EditedDate="2024-02-01T00:00:00.000Z" EditedBy="eng2">
<Description><![CDATA[Valve controller]]></Description>
<Parameters>
<Parameter Name="EnableIn" TagType="Base" DataType="BOOL" Usage="Input" Radix="Decimal" Required="false" Visible="false" ExternalAccess="Read Only"/>
<Parameter Name="Cmd" TagType="Base" DataType="BOOL" Usage="Input" Radix="Decimal" Required="true" Visible="true" ExternalAccess="Read/Write">
<Description><![CDATA[Open command]]></Description>
</Parameter>
<Parameter Name="Open" TagType="Base" DataType="BOOL" Usage="Output" Radix="Decimal" Required="true" Visible="true" ExternalAccess="Read Only"/>
</Parameters>
<LocalTags>
<LocalTag Name="Delay" DataType="TIMER" ExternalAccess="None"/>
</LocalTags>
<Routines>
<Routine Name="Logic" Type="RLL">
<RLLContent>
<Rung Number="0" Type="N">
<Text><![CDATA[XIC(Cmd)OTE(Open);]]></Text>
</Rung>
</RLLContent>
</Routine>
</Routines>
</AddOnInstructionDefinition>
</AddOnInstructionDefinitions>
<Tags>
<Tag Name="Start" TagType="Base" DataType="BOOL" Radix="Decimal" ExternalAccess="Read/Write">
<Description><![CDATA[Start pushbutton]]></Description>
<Data Format="L5K"><![CDATA[0]]></Data>
</Tag>
<Tag Name="Stop" TagType="Base" DataType="BOOL" Radix="Decimal" ExternalAccess="Read/Write"/>
<Tag Name="Motor1" TagType="Base" DataType="MotorData" ExternalAccess="Read/Write"/>
<Tag Name="Timer1" TagType="Base" DataType="TIMER" ExternalAccess="Read/Write"/>
<Tag Name="Spare" TagType="Base" DataType="DINT" Radix="Decimal" ExternalAccess="Read/Write"/>
<Tag Name="Valve1" TagType="Base" DataType="Valve_Ctl" ExternalAccess="Read/Write"/>
<Tag Name="Running_Alias" TagType="Alias" AliasFor="Motor1.Running" ExternalAccess="Read/Write"/>
</Tags>
<Programs>
<Program Name="MainProgram" TestEdits="false" MainRoutineName="MainRoutine" Disabled="false">
<Tags>
<Tag Name="Count" TagType="Base" DataType="DINT" Radix="Decimal" ExternalAccess="Read/Write"/>
</Tags>
<Routines>
<Routine Name="MainRoutine" Type="RLL">
<Description><![CDATA[Main ladder]]></Description>
<RLLContent>
<Rung Number="0" Type="N">
<Comment><![CDATA[Start/stop seal-in]]></Comment>
<Text><![CDATA[XIC(Start)XIO(Stop)OTE(Motor1.Running);]]></Text>
</Rung>
<Rung Number="1" Type="N">
<Text><![CDATA[XIC(Motor1.Running)TON(Timer1,?,?);]]></Text>
</Rung>
<Rung Number="2" Type="N">
<Comment><![CDATA[Valve and counter]]></Comment>
<Text><![CDATA[Valve_Ctl(Valve1,Start,Motor1.Running)ADD(Count,1,Count);]]></Text>
</Rung>
</RLLContent>
</Routine>
<Routine Name="Calc" Type="ST">
<STContent>
<Line Number="0"><![CDATA[Count := Count + 1;]]></Line>
</STContent>
</Routine>
</Routines>
</Program>
</Programs>
<Tasks>
<Task Name="MainTask" Type="CONTINUOUS" Priority="10" Watchdog="500" DisableUpdateOutputs="false" InhibitTask="false">
<ScheduledPrograms>
<ScheduledProgram Name="MainProgram"/>
</ScheduledPrograms>
</Task>
</Tasks>
</Controller>
</RSLogix5000Content>
"""

SAMPLE_L5K = """IE_VER := 2.27;

CONTROLLER Plant (ProcessorType := "1756-L83E",
                  Major := 33,
                  Minor := 11,
                  LastModifiedDate := "2024-01-01")
	DATATYPE MotorData (FamilyType := NoFamily,
	                    Description := "Motor status block")
		SINT ZZZZZZZZZZMotorData0 (Hidden := 1);
		BIT Running ZZZZZZZZZZMotorData0 : 0 (Radix := Decimal);
		REAL Speed (Description := "Speed in RPM", Radix := Float);
	END_DATATYPE

	MODULE Local (Parent := "Local",
	              CatalogNumber := "1756-L83E",
	              Slot := 0)
	END_MODULE

	MODULE DI_Card (Parent := "Local",
	                CatalogNumber := "1756-IB16",
	                Slot := 2,
	                CommFormat := "Input Data")
	END_MODULE

	TAG
		Start : BOOL (Description := "Start pushbutton", RADIX := Decimal) := 0;
		Stop : BOOL (RADIX := Decimal) := 0;
		Motor1 : MotorData := [0,0.0];
		Data : DINT[10] (RADIX := Decimal) := [0,0,0,0,0,0,0,0,0,0];
		Running_Alias OF Motor1.Running (RADIX := Decimal);
	END_TAG

	PROGRAM MainProgram (MAIN := "MainRoutine",
	                     MODE := 0)
		TAG
			Count : DINT (RADIX := Decimal) := 0;
		END_TAG

		ROUTINE MainRoutine (Description := "Main ladder")
				RC: "Start/stop seal-in";
				N: XIC(Start)XIO(Stop)OTE(Motor1.Running);
				N: XIC(Motor1.Running)
				   MOV(Count,Data[Count]);
		END_ROUTINE

		ST_ROUTINE Calc
			Count := Count + 1;
		END_ST_ROUTINE
	END_PROGRAM

	TASK MainTask (Type := CONTINUOUS,
	               Priority := 10,
	               Watchdog := 500)
		MainProgram;
	END_TASK
END_CONTROLLER
"""

# A program-level export: no controller tag section, two rungs
PARTIAL_L5X = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<RSLogix5000Content SchemaRevision="1.0" SoftwareRevision="33.01" TargetName="MainProgram" TargetType="Program" ContainsContext="true">
<Controller Use="Context" Name="Plant">
<Programs Use="Context">
<Program Use="Target" Name="MainProgram">
<Routines>
<Routine Name="MainRoutine" Type="RLL">
<RLLContent>
<Rung Number="0" Type="N">
<Comment><![CDATA[Seal-in]]></Comment>
<Text><![CDATA[XIC(Start)OTE(Run);]]></Text>
</Rung>
<Rung Number="1" Type="N">
<Text><![CDATA[XIC(Run)OTE(Lamp);]]></Text>
</Rung>
</RLLContent>
</Routine>
</Routines>
</Program>
</Programs>
</Controller>
</RSLogix5000Content>
"""


@pytest.fixture
def l5x_bytes():
    return SAMPLE_L5X.encode("utf-8")


@pytest.fixture
def l5k_bytes():
    return SAMPLE_L5K.encode("utf-8")


@pytest.fixture
def partial_l5x_bytes():
    return PARTIAL_L5X.encode("utf-8")


@pytest.fixture
def store():
    return SnapshotStore(RungscopeConfig())


@pytest.fixture
def sample_files(tmp_path):
    """Write the sample exports to disk and return their paths."""
    l5x_path = tmp_path / "Plant.L5X"
    l5x_path.write_text(SAMPLE_L5X, encoding="utf-8")
    l5k_path = tmp_path / "Plant.L5K"
    l5k_path.write_text(SAMPLE_L5K, encoding="utf-8")
    return {"l5x": l5x_path, "l5k": l5k_path}
